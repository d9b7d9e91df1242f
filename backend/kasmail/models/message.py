"""
Pydantic models for messages.

Models:
  AttachmentRef       — storage reference for an uploaded attachment
  MessageRecord       — row in the emails table
  SenderProfile       — subset of the profiles row the pipeline reads
  SendMessageResponse — response body for POST /api/messages/send
  SenderDisplayResponse, ReplyDraft — compose helpers
"""

from typing import Optional
from pydantic import BaseModel


class AttachmentRef(BaseModel):
    """Immutable reference to an uploaded attachment."""
    model_config = {"frozen": True}

    storage_path: str
    original_name: str
    mime_type: str


class MessageRecord(BaseModel):
    """
    Full emails record.

    ``to_wallet`` holds either a Kaspa address or an ``external:``-prefixed
    email address. ``read`` and ``archived`` are the only fields the inbox
    ever changes after insert.
    """
    model_config = {"from_attributes": True}

    id: str
    from_wallet: str
    to_wallet: str
    subject: str = ""
    body: str = ""
    dev_fee_txid: Optional[str] = None
    miner_fee_txid: Optional[str] = None
    miner_address: Optional[str] = None
    attachment: Optional[AttachmentRef] = None
    created_at: str
    read: bool = False
    archived: bool = False

    def to_row(self) -> dict:
        """Flatten into the column layout of the emails table."""
        row = self.model_dump(exclude={"attachment"})
        row["attachment_path"] = self.attachment.storage_path if self.attachment else None
        row["attachment_name"] = self.attachment.original_name if self.attachment else None
        row["attachment_mime_type"] = self.attachment.mime_type if self.attachment else None
        return row

    @classmethod
    def from_row(cls, row: dict) -> "MessageRecord":
        data = dict(row)
        path = data.pop("attachment_path", None)
        name = data.pop("attachment_name", None)
        mime_type = data.pop("attachment_mime_type", None)
        if path:
            data["attachment"] = AttachmentRef(
                storage_path=path,
                original_name=name or path.rsplit("/", 1)[-1],
                mime_type=mime_type or "application/octet-stream",
            )
        return cls(**data)


class SenderProfile(BaseModel):
    """profiles row fields used when sending."""
    model_config = {"extra": "ignore"}

    id: Optional[str] = None
    wallet_address: str
    username: Optional[str] = None
    anonymous_mode: bool = False
    only_internal: bool = True


class SendMessageResponse(BaseModel):
    message: MessageRecord
    delivery: str  # "internal" or "external"
    dev_fee_txid: Optional[str] = None
    miner_fee_txid: Optional[str] = None
    miner_address: Optional[str] = None


class SenderDisplayResponse(BaseModel):
    wallet_address: str
    display: str


class ReplyDraft(BaseModel):
    to: str
    subject: str
    body: str


class AttachmentUrlResponse(BaseModel):
    url: str
    filename: str
    mime_type: str
    expires_in: int
