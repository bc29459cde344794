"""Response payloads of Apple's Sign in with Apple REST endpoints."""

from pydantic import BaseModel


class OAuthErrorBody(BaseModel):
    """Error fields Apple attaches to failed OAuth requests.

    ``error`` is one of invalid_request, invalid_client, invalid_grant,
    unauthorized_client, unsupported_grant_type or invalid_scope.
    """

    error: str = ""
    error_description: str = ""


class TokenResponse(OAuthErrorBody):
    """POST /auth/token response."""

    access_token: str = ""
    token_type: str = "bearer"
    expires_in: int = 0
    refresh_token: str = ""
    id_token: str = ""


class RevokeResponse(OAuthErrorBody):
    """POST /auth/revoke response. Apple answers 200 with an empty body."""


class GenerateTransferSubResponse(BaseModel):
    """Transfer identifier handed to the recipient team."""

    transfer_sub: str = ""


class ExchangeIdentifierResponse(BaseModel):
    """Recipient-team identifiers of a transferred user."""

    sub: str = ""
    email: str = ""
    is_private_email: bool = False
