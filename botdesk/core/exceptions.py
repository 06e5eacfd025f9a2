"""
Domain exceptions for the BotDesk API.

Each error carries the HTTP status code it maps to; the handlers installed in
``botdesk.main`` turn them into ``{"detail": ...}`` responses.
"""


class BotDeskError(Exception):
    """Base exception for BotDesk domain errors."""

    status_code = 500

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ValidationError(BotDeskError):
    """Raised when request input is missing or malformed."""

    status_code = 400


class NotFoundError(BotDeskError):
    """Raised when a user, bot, credential or customer mapping is missing."""

    status_code = 404

    def __init__(self, resource: str, identifier: str = None):
        self.resource = resource
        self.identifier = identifier
        super().__init__(f"{resource} not found")


class AuthorizationError(BotDeskError):
    """Raised on ownership mismatch or missing authentication."""

    status_code = 401

    def __init__(self, message: str = "Not authorized"):
        super().__init__(message)


class PermissionDeniedError(BotDeskError):
    """Raised when the caller is authenticated but not entitled to the action."""

    status_code = 403


class InvalidSignature(BotDeskError):
    """Raised when a webhook payload fails provider signature validation."""

    status_code = 400

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Invalid webhook signature: {reason}")


class UpstreamProviderError(BotDeskError):
    """Raised when a payment provider call fails. Not retried internally."""

    status_code = 502

    def __init__(self, operation: str, reason: str):
        self.operation = operation
        self.reason = reason
        super().__init__(f"Payment provider error during {operation}")


class CryptoError(BotDeskError):
    """Raised when ciphertext is malformed or was produced under another key."""

    status_code = 500


class AlreadyBoundError(BotDeskError):
    """Raised when a user already has a different Stripe customer id."""

    status_code = 409

    def __init__(self, user_id: str, existing_customer_id: str = None):
        self.user_id = user_id
        self.existing_customer_id = existing_customer_id
        super().__init__("User is already bound to a different billing customer")


class NoCustomerError(BotDeskError):
    """Raised when a portal session is requested before any checkout."""

    status_code = 400

    def __init__(self, user_id: str):
        self.user_id = user_id
        super().__init__("No billing customer found for user")


class ConsistencyWarning(UserWarning):
    """Category for webhook events whose customer maps to no user."""
