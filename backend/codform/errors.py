"""Errors raised by the storefront order flow.

Each error carries the HTTP status and the short, customer-facing message
the proxy route returns. Upstream details are logged, never returned.
"""


class CodOrderError(Exception):
    status_code = 400
    default_message = "Something went wrong."

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class MissingFieldError(CodOrderError):
    status_code = 400
    default_message = "Missing cart or customer data."


class ForbiddenError(CodOrderError):
    status_code = 403
    default_message = "Your IP has been blocked due to suspicious activity."


class RateLimitedError(CodOrderError):
    status_code = 429
    default_message = "You have already placed an order recently. Please try again later."


class InvalidOtpError(CodOrderError):
    status_code = 401
    default_message = "Invalid OTP."


class UpstreamValidationError(CodOrderError):
    status_code = 422
    default_message = "The order could not be created."


class UpstreamUnavailableError(CodOrderError):
    status_code = 502
    default_message = "The store is temporarily unavailable. Please try again."
