"""
Message commit: the single write that creates an emails row.

The pipeline carries recipients as RecipientTarget values; the ``external:``
marker that downstream list/search code matches on is added here, at the
persistence edge, and stripped again by ``decode_target``.
"""

import logging
from datetime import datetime, timezone
from typing import Optional
from uuid import uuid4

from fastapi.concurrency import run_in_threadpool

from kasmail.db import supabase_admin
from kasmail.errors import CommitFailed, PaymentFailed
from kasmail.models.dispatch import (
    ExternalAddress,
    FeeTransactionOutcome,
    InternalAddress,
    RecipientTarget,
)
from kasmail.models.message import AttachmentRef, MessageRecord

logger = logging.getLogger(__name__)

MESSAGES_TABLE = "emails"
EXTERNAL_PREFIX = "external:"


def encode_target(target: RecipientTarget) -> str:
    """RecipientTarget → stored address string."""
    if isinstance(target, ExternalAddress):
        return f"{EXTERNAL_PREFIX}{target.email}"
    return target.address


def decode_target(stored: str) -> RecipientTarget:
    """Stored address string → RecipientTarget."""
    if stored.startswith(EXTERNAL_PREFIX):
        return ExternalAddress(email=stored[len(EXTERNAL_PREFIX):])
    return InternalAddress(address=stored)


def build_message_record(
    from_address: str,
    target: RecipientTarget,
    subject: str,
    body: str,
    fees: Optional[FeeTransactionOutcome] = None,
    attachment: Optional[AttachmentRef] = None,
) -> MessageRecord:
    """Assemble a record from whatever the earlier steps produced."""
    fees = fees or FeeTransactionOutcome()
    return MessageRecord(
        id=str(uuid4()),
        from_wallet=from_address,
        to_wallet=encode_target(target),
        subject=subject,
        body=body,
        dev_fee_txid=fees.dev_fee_txid,
        miner_fee_txid=fees.miner_fee_txid,
        miner_address=fees.miner_address,
        attachment=attachment,
        created_at=datetime.now(timezone.utc).isoformat(),
        read=False,
        archived=False,
    )


def _insert_sync(row: dict) -> dict:
    if not supabase_admin:
        raise ValueError("SUPABASE_SERVICE_KEY is required to store messages")

    result = supabase_admin.table(MESSAGES_TABLE).insert(row).execute()
    if not result.data:
        raise Exception("Insert returned no data")
    return result.data[0]


async def insert_message(record: MessageRecord) -> MessageRecord:
    row = await run_in_threadpool(_insert_sync, record.to_row())
    return MessageRecord.from_row(row)


class MessageCommitter:
    """
    Persists exactly one MessageRecord per dispatch.

    ``payment_required`` guards the proof-of-payment invariant: an internal
    message is never written without at least one fee transaction id.
    """

    def __init__(self, insert=insert_message):
        self._insert = insert
        self.committed: Optional[MessageRecord] = None

    async def commit(self, record: MessageRecord, payment_required: bool) -> MessageRecord:
        """
        Raises:
            PaymentFailed: payment was required but no fee transaction is attached
            CommitFailed: the storage write failed
        """
        if self.committed is not None:
            raise RuntimeError("Message already committed for this dispatch")
        if payment_required and not (record.dev_fee_txid or record.miner_fee_txid):
            raise PaymentFailed()

        try:
            stored = await self._insert(record)
        except Exception as e:
            # Fees may already be spent at this point; nothing is rolled back.
            logger.error(f"Failed to store message {record.id}: {e}")
            raise CommitFailed(f"Failed to store message: {str(e)}", cause=e)

        self.committed = stored
        logger.info(f"Committed message {stored.id} to {stored.to_wallet}")
        return stored
