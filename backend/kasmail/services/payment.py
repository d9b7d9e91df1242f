"""
Anti-bot fee orchestration.

Each internal message is backed by up to two wallet transfers, issued one
after the other because the wallet serializes its confirmation popups:

  A. developer fee → KASMAIL_DEV_WALLET
  B. miner reward  → a random active miner (skipped when the pool is empty)

A transfer that is cancelled, times out or fails is recorded as absent and
the pipeline moves on. Settlement succeeds when at least one transfer
produced a transaction id; with none, PaymentFailed aborts the dispatch.

States: NOT_STARTED → DEV_FEE_ATTEMPTED → MINER_FEE_ATTEMPTED → SETTLED
"""

import asyncio
import logging
import os
from typing import Awaitable, Callable, Optional

import httpx

from kasmail.errors import PaymentFailed
from kasmail.models.dispatch import FeeTransactionOutcome, MinerAddress, PaymentState
from kasmail.services.kaspa import SOMPI_PER_KAS, WalletRejected, short_address
from kasmail.services.miner_selector import select_miner

logger = logging.getLogger(__name__)

DEFAULT_DEV_FEE_SOMPI = SOMPI_PER_KAS
DEFAULT_MINER_FEE_SOMPI = SOMPI_PER_KAS
DEFAULT_WALLET_TIMEOUT_SECONDS = 120.0


def get_dev_wallet() -> str:
    """Return the platform fee address (KASMAIL_DEV_WALLET)."""
    address = os.getenv("KASMAIL_DEV_WALLET", "").strip()
    if not address:
        raise ValueError("KASMAIL_DEV_WALLET must be set to charge the anti-bot fee")
    return address


def get_fee_amounts() -> tuple[int, int]:
    """Return (dev_fee, miner_fee) in sompi."""
    return (
        int(os.getenv("KASMAIL_DEV_FEE_SOMPI", DEFAULT_DEV_FEE_SOMPI)),
        int(os.getenv("KASMAIL_MINER_FEE_SOMPI", DEFAULT_MINER_FEE_SOMPI)),
    )


def get_fee_options() -> dict:
    return {"priority_fee": int(os.getenv("KASMAIL_PRIORITY_FEE_SOMPI", "0"))}


def get_wallet_timeout() -> float:
    return float(os.getenv("KASMAIL_WALLET_TIMEOUT_SECONDS", DEFAULT_WALLET_TIMEOUT_SECONDS))


class PaymentOrchestrator:
    """
    Runs the developer-fee and miner-reward transfers for one dispatch.

    ``wallet`` must expose ``async transfer(to_address, amount, fee_options) -> txid``.
    An orchestrator is single-use; create one per dispatch.
    """

    def __init__(
        self,
        wallet,
        dev_wallet: Optional[str] = None,
        dev_fee: Optional[int] = None,
        miner_fee: Optional[int] = None,
        fee_options: Optional[dict] = None,
        timeout: Optional[float] = None,
        choose_miner: Callable[[], Awaitable[Optional[MinerAddress]]] = select_miner,
    ):
        default_dev_fee, default_miner_fee = get_fee_amounts()
        self.wallet = wallet
        self.dev_wallet = dev_wallet or get_dev_wallet()
        self.dev_fee = default_dev_fee if dev_fee is None else dev_fee
        self.miner_fee = default_miner_fee if miner_fee is None else miner_fee
        self.fee_options = get_fee_options() if fee_options is None else fee_options
        self.timeout = get_wallet_timeout() if timeout is None else timeout
        self.choose_miner = choose_miner
        self.outcome = FeeTransactionOutcome()

    @property
    def state(self) -> PaymentState:
        return self.outcome.state

    async def _transfer(self, label: str, to_address: str, amount: int) -> Optional[str]:
        """Run one transfer; any rejection, timeout or transport error yields None."""
        try:
            txid = await asyncio.wait_for(
                self.wallet.transfer(to_address, amount, self.fee_options),
                timeout=self.timeout,
            )
        except WalletRejected as e:
            logger.warning(f"{label} transfer to {short_address(to_address)} cancelled: {e}")
            return None
        except asyncio.TimeoutError:
            logger.warning(f"{label} transfer to {short_address(to_address)} timed out after {self.timeout}s")
            return None
        except httpx.HTTPError as e:
            logger.warning(f"{label} transfer to {short_address(to_address)} failed: {e}")
            return None

        logger.info(f"{label} transfer confirmed: txid={txid}")
        return txid

    async def _pick_miner(self) -> Optional[MinerAddress]:
        try:
            return await self.choose_miner()
        except Exception as e:
            # A pool read failure costs the miner reward, not the message.
            logger.warning(f"Miner selection failed, skipping miner reward: {e}")
            return None

    async def run(self) -> FeeTransactionOutcome:
        """
        Execute both fee steps and settle.

        Raises:
            PaymentFailed: neither transfer produced a transaction id
        """
        if self.outcome.state != PaymentState.NOT_STARTED:
            raise RuntimeError("PaymentOrchestrator has already run")

        self.outcome.dev_fee_txid = await self._transfer("Dev fee", self.dev_wallet, self.dev_fee)
        self.outcome.state = PaymentState.DEV_FEE_ATTEMPTED

        miner = await self._pick_miner()
        if miner is not None:
            txid = await self._transfer("Miner reward", miner.address, self.miner_fee)
            if txid:
                self.outcome.miner_fee_txid = txid
                self.outcome.miner_address = miner.address
        self.outcome.state = PaymentState.MINER_FEE_ATTEMPTED

        if not self.outcome.settled:
            logger.error("Both anti-bot fee transfers are absent; aborting dispatch")
            raise PaymentFailed()

        self.outcome.state = PaymentState.SETTLED
        return self.outcome
