from __future__ import annotations


class BrokerError(RuntimeError):
    status_code = 500
    public_message = "Internal server error."

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.public_message)


class ConfigError(BrokerError):
    """Missing or invalid server configuration. Fatal at startup."""

    public_message = "Backlog OAuth is not configured."


class ValidationError(BrokerError):
    status_code = 400
    public_message = "Invalid request."

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message)
        # Validation reasons are written for the caller and safe to return.
        if message:
            self.public_message = message


class AuthError(BrokerError):
    status_code = 401
    public_message = "Not authenticated."

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message)
        if message:
            self.public_message = message


class CsrfError(BrokerError):
    status_code = 403
    public_message = "CSRF token mismatch."


class OriginError(BrokerError):
    status_code = 403
    public_message = "Origin not allowed."


class UpstreamError(BrokerError):
    status_code = 502
    public_message = "Backlog API request failed."

    def __init__(self, message: str | None = None, *, upstream_status: int | None = None) -> None:
        super().__init__(message)
        self.upstream_status = upstream_status


class NotFoundError(BrokerError):
    status_code = 404
    public_message = "Not found."

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message)
        if message:
            self.public_message = message


class PayloadTooLargeError(BrokerError):
    status_code = 413
    public_message = "Request body too large."
