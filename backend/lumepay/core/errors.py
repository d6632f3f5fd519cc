"""
Gateway error taxonomy.

Every failure surfaced to an API caller is a GatewayError carrying a
stable machine-readable ``kind``, a human message and the HTTP status it
maps to. The exception handlers in ``lumepay.main`` render them as
``{"error": kind, "message": message}``.
"""


class GatewayError(Exception):
    kind = "Internal"
    status_code = 500
    default_message = "Something went wrong"

    def __init__(self, message: str | None = None, details: dict | None = None):
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)

    def to_dict(self) -> dict:
        body = {"error": self.kind, "message": self.message}
        if self.details:
            body["details"] = self.details
        return body


# --- Base kinds ---

class Unauthenticated(GatewayError):
    kind = "Unauthenticated"
    status_code = 401
    default_message = "Unauthorized"


class Forbidden(GatewayError):
    kind = "Forbidden"
    status_code = 403
    default_message = "Unauthorized"


class NotFound(GatewayError):
    kind = "NotFound"
    status_code = 404
    default_message = "Not found"


class InvalidInput(GatewayError):
    kind = "InvalidInput"
    status_code = 400
    default_message = "Invalid input"


class Conflict(GatewayError):
    kind = "Conflict"
    status_code = 400
    default_message = "Conflict"


class RateLimited(GatewayError):
    kind = "RateLimited"
    status_code = 429
    default_message = "Rate limit exceeded"


class InsufficientCredits(GatewayError):
    kind = "InsufficientCredits"
    status_code = 402
    default_message = "Insufficient credits"


class UpstreamFailure(GatewayError):
    kind = "UpstreamFailure"
    status_code = 502
    default_message = "Upstream service unavailable"


class Internal(GatewayError):
    pass


# --- Named failures ---

class KeyDisabled(Unauthenticated):
    kind = "KeyDisabled"
    default_message = "API key is disabled"


class IntentNotFound(NotFound):
    kind = "IntentNotFound"
    default_message = "Intent not found"


class DeliveryNotFound(NotFound):
    kind = "DeliveryNotFound"
    default_message = "Delivery not found"


class InvalidAmount(InvalidInput):
    kind = "InvalidAmount"
    default_message = "Valid amount is required"


class MissingTransactionId(InvalidInput):
    kind = "MissingTransactionId"
    default_message = "Transaction ID is required"


class DuplicateTransaction(Conflict):
    kind = "DuplicateTransaction"
    default_message = "This transaction ID has already been used for another payment"


class IntentNotPending(Conflict):
    kind = "IntentNotPending"
    default_message = "Intent is no longer pending"


class IntentExpired(Conflict):
    kind = "IntentExpired"
    default_message = "Intent has expired"


class BankNotConfigured(Conflict):
    kind = "BankNotConfigured"
    default_message = "Merchant bank details not configured"


class ApiKeyExists(Conflict):
    kind = "ApiKeyExists"
    default_message = "An API key already exists for this account"


class WebhookNotConfigured(Conflict):
    kind = "WebhookNotConfigured"
    default_message = "Webhook is not configured"


class VerificationFailed(UpstreamFailure):
    """The verification service answered, and the answer was no."""

    kind = "VerificationFailed"
    status_code = 400
    default_message = "Payment verification failed"
