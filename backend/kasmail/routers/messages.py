"""
Message sending API endpoints.

Endpoints:
  POST /send                     — dispatch one message (auth: JWT)
  GET  /sender                   — how the sender appears to recipients (auth: JWT)
  GET  /{message_id}/reply-draft — prefilled reply to a received message (auth: JWT)
  GET  /{message_id}/attachment-url — signed download link for the attachment (auth: JWT)
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile
from fastapi.concurrency import run_in_threadpool

from kasmail.auth import get_current_user, load_sender_profile
from kasmail.db import supabase_admin
from kasmail.errors import DispatchError
from kasmail.models.dispatch import InternalAddress, OutgoingAttachment, SendPreferences
from kasmail.models.message import (
    AttachmentUrlResponse,
    MessageRecord,
    ReplyDraft,
    SenderDisplayResponse,
    SendMessageResponse,
)
from kasmail.services.attachments import get_attachment_url
from kasmail.services.compose import build_reply_draft, sender_display
from kasmail.services.committer import MESSAGES_TABLE, decode_target
from kasmail.services.dispatcher import MessageDispatcher

logger = logging.getLogger(__name__)

router = APIRouter()


def get_dispatcher() -> MessageDispatcher:
    """Dispatcher with the default collaborators; overridden in tests."""
    return MessageDispatcher()


@router.post("/send", response_model=SendMessageResponse, status_code=201)
async def send_message(
    to: str = Form(...),
    subject: str = Form(""),
    body: str = Form(...),
    file: Optional[UploadFile] = File(None),
    user_id: str = Depends(get_current_user),
    dispatcher: MessageDispatcher = Depends(get_dispatcher),
):
    """
    Send a message.

    Internal recipients cost the anti-bot fee (developer fee + miner reward,
    at least one must go through). External recipients go through the mail
    relay without a fee.

    Requires authentication.
    """
    if not body.strip() or not to.strip():
        raise HTTPException(status_code=400, detail="Recipient and message body are required")

    profile = await load_sender_profile(user_id)
    preferences = SendPreferences(only_internal=profile.only_internal)

    attachment = None
    if file is not None and file.filename:
        attachment = OutgoingAttachment(
            content=await file.read(),
            filename=file.filename,
            content_type=file.content_type,
        )

    try:
        result = await dispatcher.dispatch(
            sender_address=profile.wallet_address,
            preferences=preferences,
            to=to,
            subject=subject,
            body=body,
            attachment=attachment,
            username=profile.username,
            anonymous_mode=profile.anonymous_mode,
        )
    except DispatchError as e:
        logger.warning(f"Dispatch for user {user_id} failed: {e.code} {e.message}")
        raise HTTPException(status_code=e.status_code, detail=e.to_detail())

    return SendMessageResponse(
        message=result.record,
        delivery=result.delivery,
        dev_fee_txid=result.fees.dev_fee_txid,
        miner_fee_txid=result.fees.miner_fee_txid,
        miner_address=result.fees.miner_address,
    )


@router.get("/sender", response_model=SenderDisplayResponse)
async def get_sender_display(user_id: str = Depends(get_current_user)):
    """Return the From line shown on outgoing messages."""
    profile = await load_sender_profile(user_id)
    return SenderDisplayResponse(
        wallet_address=profile.wallet_address,
        display=sender_display(profile.wallet_address, profile.username, profile.anonymous_mode),
    )


@router.get("/{message_id}/reply-draft", response_model=ReplyDraft)
async def get_reply_draft(message_id: str, user_id: str = Depends(get_current_user)):
    """
    Prefill a reply: recipient is the original sender, subject gets a single
    "Re: " prefix, and the original body is quoted.

    Only participants of the original message may reply to it.
    """
    profile = await load_sender_profile(user_id)

    try:
        result = (
            supabase_admin.table(MESSAGES_TABLE)
            .select("from_wallet, to_wallet, subject, body")
            .eq("id", message_id)
            .execute()
        )
    except Exception as e:
        logger.error(f"Failed to load message {message_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to load message")

    if not result.data:
        raise HTTPException(status_code=404, detail="Message not found")

    original = result.data[0]
    if profile.wallet_address not in (original.get("from_wallet"), original.get("to_wallet")):
        raise HTTPException(status_code=403, detail="You are not authorized to access this message")

    return build_reply_draft(original)


ATTACHMENT_URL_EXPIRY_SECONDS = 3600


@router.get("/{message_id}/attachment-url", response_model=AttachmentUrlResponse)
async def get_message_attachment_url(message_id: str, user_id: str = Depends(get_current_user)):
    """
    Return a short-lived signed URL for the message's attachment.

    Only the sender and an internal recipient may read it; relayed messages
    never carry attachments.
    """
    profile = await load_sender_profile(user_id)

    try:
        result = supabase_admin.table(MESSAGES_TABLE).select("*").eq("id", message_id).execute()
    except Exception as e:
        logger.error(f"Failed to load message {message_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to load message")

    if not result.data:
        raise HTTPException(status_code=404, detail="Message not found")

    record = MessageRecord.from_row(result.data[0])
    recipient = decode_target(record.to_wallet)
    is_recipient = isinstance(recipient, InternalAddress) and recipient.address == profile.wallet_address
    if profile.wallet_address != record.from_wallet and not is_recipient:
        raise HTTPException(status_code=403, detail="You are not authorized to access this message")

    if record.attachment is None:
        raise HTTPException(status_code=404, detail="Message has no attachment")

    try:
        url = await run_in_threadpool(
            get_attachment_url, record.attachment.storage_path, ATTACHMENT_URL_EXPIRY_SECONDS
        )
    except Exception as e:
        logger.error(f"Signed URL for message {message_id} failed: {e}")
        raise HTTPException(status_code=502, detail="Failed to generate attachment URL")

    return AttachmentUrlResponse(
        url=url,
        filename=record.attachment.original_name,
        mime_type=record.attachment.mime_type,
        expires_in=ATTACHMENT_URL_EXPIRY_SECONDS,
    )
