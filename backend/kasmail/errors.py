"""
Dispatch error taxonomy.

Every terminal failure of the send pipeline is one of these. Each carries a
stable ``code`` for API clients and a single human-readable ``message``.
Non-terminal conditions (a cancelled fee transfer, an empty miner pool) are
not errors and never show up here.
"""

from typing import Optional


class DispatchError(Exception):
    """Base class for terminal dispatch failures."""

    code = "DISPATCH_FAILED"
    status_code = 500
    default_message = "Failed to send message"

    def __init__(self, message: Optional[str] = None, cause: Optional[BaseException] = None):
        self.message = message or self.default_message
        self.cause = cause
        super().__init__(self.message)

    def to_detail(self) -> dict:
        return {"code": self.code, "message": self.message}


class Ineligible(DispatchError):
    code = "INELIGIBLE"
    status_code = 403
    default_message = "Minimum 1 KAS required to send messages"


class PolicyViolation(DispatchError):
    code = "POLICY_VIOLATION"
    status_code = 422
    default_message = "Recipient does not match your sending mode"


class RecipientNotFound(DispatchError):
    code = "RECIPIENT_NOT_FOUND"
    status_code = 404
    default_message = "Recipient not found"


class AttachmentRejected(DispatchError):
    code = "ATTACHMENT_REJECTED"
    status_code = 422
    default_message = "Attachment is not allowed"


class PaymentFailed(DispatchError):
    code = "PAYMENT_FAILED"
    status_code = 402
    default_message = (
        "Anti-bot fee transactions failed or were cancelled. "
        "Cannot send a message without proof of payment."
    )


class UploadFailed(DispatchError):
    code = "UPLOAD_FAILED"
    status_code = 502
    default_message = "Attachment upload failed"


class RelayFailed(DispatchError):
    code = "RELAY_FAILED"
    status_code = 502
    default_message = "External mail relay rejected the message"


class CommitFailed(DispatchError):
    code = "COMMIT_FAILED"
    status_code = 502
    default_message = "Failed to store message"
