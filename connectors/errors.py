"""Exception hierarchy for the integration layer.

Every error carries a machine-readable ``code`` and the HTTP status the
route layer should answer with, so handlers can turn any failure into a
structured payload without inspecting exception types.
"""

from typing import Optional


class IntegrationError(Exception):
    """Base exception for all integration errors.

    Attributes:
        code: Machine-readable error code
        message: Human-readable error message
        status_code: HTTP status code for API responses
    """

    def __init__(self, message: str, code: str, status_code: int) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.status_code = status_code


class ConfigurationError(IntegrationError):
    """Credentials for a provider are missing or malformed."""

    def __init__(self, message: str, provider: Optional[str] = None) -> None:
        super().__init__(message=message, code="not_configured", status_code=400)
        self.provider = provider


class NotAuthenticatedError(IntegrationError):
    """No refresh token is stored for an OAuth provider."""

    def __init__(self, provider: str) -> None:
        super().__init__(
            message=f"Not authenticated with {provider}",
            code="not_authenticated",
            status_code=401,
        )
        self.provider = provider


class OAuthExchangeError(IntegrationError):
    """The authorization-code exchange was rejected or never attempted."""

    def __init__(self, provider: str, message: str) -> None:
        super().__init__(message=message, code="oauth_exchange_failed", status_code=400)
        self.provider = provider


class ReauthRequiredError(IntegrationError):
    """The stored refresh token is no longer accepted by the provider.

    Retrying will not help; the user has to go through the consent screen
    again, which produces a fresh refresh token via ``exchange_code``.
    """

    def __init__(self, provider: str, message: Optional[str] = None) -> None:
        super().__init__(
            message=message or f"{provider} authentication expired. Please re-authenticate.",
            code="reauth_required",
            status_code=401,
        )
        self.provider = provider


class InvalidStateError(IntegrationError):
    """The OAuth ``state`` returned on callback does not match one we issued."""

    def __init__(self, reason: str) -> None:
        super().__init__(
            message=f"Invalid or expired OAuth state: {reason}",
            code="invalid_state",
            status_code=400,
        )


class ProviderError(IntegrationError):
    """An upstream API answered with a non-success status."""

    def __init__(
        self,
        provider: str,
        http_status: int,
        message: str,
        code: str = "provider_error",
        status_code: int = 502,
    ) -> None:
        super().__init__(message=message, code=code, status_code=status_code)
        self.provider = provider
        self.http_status = http_status

    def __repr__(self) -> str:
        return f"ProviderError(provider={self.provider!r}, http_status={self.http_status}, message={self.message!r})"


class PremiumRequiredError(ProviderError):
    """Playback control is only available on a premium plan."""

    def __init__(self, provider: str = "spotify") -> None:
        super().__init__(
            provider=provider,
            http_status=403,
            message="Premium account required for playback control",
            code="premium_required",
            status_code=403,
        )


class InvalidActionError(IntegrationError):
    def __init__(self, action: str) -> None:
        super().__init__(
            message=f"Invalid action: {action}",
            code="invalid_action",
            status_code=400,
        )
        self.action = action


class DecryptionError(Exception):
    """A stored value could not be decrypted with the configured key.

    Never propagates past :class:`connectors.encryption.CredentialCipher`.
    """
