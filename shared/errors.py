from typing import Optional


class IntegrationError(Exception):
    """Base error for the integration endpoints; carries the HTTP status to answer with."""

    status_code = 500
    public_message = "Internal server error"

    def __init__(self, message: Optional[str] = None) -> None:
        super().__init__(message or self.public_message)
        self.message = message or self.public_message


class AuthenticationError(IntegrationError):
    status_code = 401
    public_message = "Missing or invalid authorization header"


class ValidationError(IntegrationError):
    status_code = 400
    public_message = "Invalid request"


class UpstreamProviderError(IntegrationError):
    """A non-2xx answer from Google. The body is for server logs only."""

    status_code = 400
    public_message = "Google request failed"

    def __init__(
        self,
        message: Optional[str] = None,
        provider_status: Optional[int] = None,
        provider_body: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.provider_status = provider_status
        self.provider_body = provider_body


class ConfigurationError(IntegrationError, ValueError):
    status_code = 500
    public_message = "Server is not configured"


class CipherError(IntegrationError, ValueError):
    """Token encryption/decryption failure. Never fatal to a request."""

    status_code = 500
    public_message = "Token cipher failure"
