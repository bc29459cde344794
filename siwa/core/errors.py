"""Exception hierarchy for Sign in with Apple operations."""


class SignInWithAppleError(Exception):
    """Base class for every error raised by this package."""


class ConstructionError(SignInWithAppleError):
    """No usable key set could be loaded at startup."""


class FetchError(SignInWithAppleError):
    """Fetching the provider's public key set failed."""


class ClientClosedError(SignInWithAppleError):
    """An operation was attempted after shutdown."""


class SchedulerStateError(SignInWithAppleError):
    """Illegal refresh scheduler lifecycle transition."""


class VerifyError(SignInWithAppleError):
    """Identity token verification failed."""


class EmptyTokenError(VerifyError):
    """The identity token was empty."""

    def __init__(self) -> None:
        super().__init__("id_token is required, must not be empty")


class MalformedTokenError(VerifyError):
    """The token or its signing key record could not be parsed."""


class UnknownKeyError(VerifyError):
    """The token's kid is not in the current key set."""

    def __init__(self, key_id: str) -> None:
        super().__init__(f"missing Apple public key for kid {key_id!r}")
        self.key_id = key_id


class InvalidTokenError(VerifyError):
    """Signature or claim verification failed."""

    def __init__(self, reason: str) -> None:
        super().__init__(f"invalid id_token: {reason}")
        self.reason = reason


class SignError(SignInWithAppleError):
    """Client secret generation failed."""


class BadKeyError(SignError):
    """The signing key is not a usable PEM-encoded P-256 private key."""


class SigningFailedError(SignError):
    """The signing operation itself failed."""


class GatewayError(SignInWithAppleError):
    """An Apple REST endpoint could not be reached or answered garbage."""


class ProviderError(GatewayError):
    """Apple answered with an OAuth error payload."""

    def __init__(self, error: str, description: str = "") -> None:
        super().__init__(f"error {error!r}: {description}")
        self.error = error
        self.description = description
