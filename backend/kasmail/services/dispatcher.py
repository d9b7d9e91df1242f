"""
Outbound message dispatch.

One call to ``MessageDispatcher.dispatch`` is one end-to-end send attempt:

  eligibility → recipient resolution →
      internal: fees → attachment upload → commit
      external: relay → commit

Each external call is awaited in turn; nothing runs in parallel inside a
dispatch. Concurrent dispatches from the same sender share no lock. There is
no automatic retry and no idempotency key, so a manual resend charges fees
again and creates a second record.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Optional

from kasmail.errors import AttachmentRejected, Ineligible
from kasmail.models.dispatch import (
    ExternalAddress,
    FeeTransactionOutcome,
    OutgoingAttachment,
    RecipientTarget,
    SendPreferences,
)
from kasmail.models.message import MessageRecord
from kasmail.services.attachments import upload_attachment, validate_attachment
from kasmail.services.committer import MessageCommitter, build_message_record, insert_message
from kasmail.services.eligibility import check_eligibility
from kasmail.services.kaspa import KaspaBalanceOracle, WalletBridge, short_address
from kasmail.services.miner_selector import select_miner
from kasmail.services.payment import PaymentOrchestrator
from kasmail.services.recipient_resolver import lookup_username, resolve_recipient
from kasmail.services.relay import deliver_external, get_relay, relay_from_address

logger = logging.getLogger(__name__)


@dataclass
class DispatchResult:
    record: MessageRecord
    target: RecipientTarget
    fees: FeeTransactionOutcome

    @property
    def delivery(self) -> str:
        return "external" if isinstance(self.target, ExternalAddress) else "internal"


class MessageDispatcher:
    """
    Wires the pipeline steps to their collaborators.

    Every collaborator can be swapped; the defaults talk to the Kaspa REST API,
    the wallet bridge, Supabase and the configured mail relay.
    """

    def __init__(
        self,
        oracle=None,
        wallet_factory: Optional[Callable[[str], object]] = None,
        relay=None,
        lookup=lookup_username,
        choose_miner=select_miner,
        upload=upload_attachment,
        insert=insert_message,
        min_balance: Optional[int] = None,
    ):
        self.oracle = oracle or KaspaBalanceOracle()
        self.wallet_factory = wallet_factory or WalletBridge
        self._relay = relay
        self.lookup = lookup
        self.choose_miner = choose_miner
        self.upload = upload
        self.insert = insert
        self.min_balance = min_balance

    @property
    def relay(self):
        if self._relay is None:
            self._relay = get_relay()
        return self._relay

    async def dispatch(
        self,
        sender_address: str,
        preferences: SendPreferences,
        to: str,
        subject: str,
        body: str,
        attachment: Optional[OutgoingAttachment] = None,
        username: Optional[str] = None,
        anonymous_mode: bool = False,
    ) -> DispatchResult:
        """
        Run one dispatch attempt.

        Raises:
            DispatchError subclass for every terminal failure
        """
        sender, eligibility = await check_eligibility(sender_address, self.oracle, self.min_balance)
        if not eligibility.eligible:
            raise Ineligible(eligibility.reason)

        target = await resolve_recipient(to, preferences, sender, lookup=self.lookup)

        if isinstance(target, ExternalAddress):
            if attachment is not None:
                raise AttachmentRejected("Attachments can only be sent to KasMail recipients")
            return await self._dispatch_external(sender.address, target, subject, body, username, anonymous_mode)

        # Reject a bad attachment before any fee is charged.
        if attachment is not None:
            validate_attachment(attachment.content, attachment.filename, attachment.content_type)

        return await self._dispatch_internal(sender.address, target, subject, body, attachment)

    async def _dispatch_internal(
        self,
        sender_address: str,
        target: RecipientTarget,
        subject: str,
        body: str,
        attachment: Optional[OutgoingAttachment],
    ) -> DispatchResult:
        orchestrator = PaymentOrchestrator(
            self.wallet_factory(sender_address),
            choose_miner=self.choose_miner,
        )
        fees = await orchestrator.run()

        attachment_ref = None
        if attachment is not None:
            attachment_ref = await self.upload(
                attachment.content,
                sender_address,
                attachment.filename,
                attachment.content_type,
            )

        record = build_message_record(sender_address, target, subject, body, fees, attachment_ref)
        stored = await MessageCommitter(self.insert).commit(record, payment_required=True)
        logger.info(
            f"Dispatched internal message {stored.id} from {short_address(sender_address)} "
            f"(dev_fee={fees.dev_fee_txid is not None}, miner_fee={fees.miner_fee_txid is not None})"
        )
        return DispatchResult(record=stored, target=target, fees=fees)

    async def _dispatch_external(
        self,
        sender_address: str,
        target: ExternalAddress,
        subject: str,
        body: str,
        username: Optional[str],
        anonymous_mode: bool,
    ) -> DispatchResult:
        await deliver_external(
            target,
            relay_from_address(username, anonymous_mode),
            subject,
            body,
            self.relay,
        )

        fees = FeeTransactionOutcome()
        record = build_message_record(sender_address, target, subject, body, fees)
        stored = await MessageCommitter(self.insert).commit(record, payment_required=False)
        logger.info(f"Dispatched external message {stored.id} from {short_address(sender_address)}")
        return DispatchResult(record=stored, target=target, fees=fees)
