"""
Unit tests for the anti-bot fee orchestrator.

The wallet is an AsyncMock whose transfer() side effect decides, per
destination, whether the user confirms or dismisses the popup.
"""

import asyncio
import os

import httpx
import pytest
from unittest.mock import AsyncMock, patch

from kasmail.errors import PaymentFailed
from kasmail.models.dispatch import MinerAddress, PaymentState
from kasmail.services.kaspa import WalletRejected
from kasmail.services.payment import PaymentOrchestrator, get_dev_wallet

DEV_WALLET = "kaspa:q" + "d" * 60
MINER = MinerAddress(address="kaspa:q" + "m" * 60, rank=7)

OK = "ok"
CANCEL = "cancel"


def _wallet(dev=OK, miner=OK) -> AsyncMock:
    """Wallet whose transfer outcome depends on the destination address."""
    behaviour = {DEV_WALLET: dev, MINER.address: miner}

    async def transfer(to_address, amount, fee_options):
        outcome = behaviour[to_address]
        if outcome == OK:
            return f"tx-{to_address[-4:]}"
        if isinstance(outcome, BaseException):
            raise outcome
        raise WalletRejected("User rejected the request")

    wallet = AsyncMock()
    wallet.transfer.side_effect = transfer
    return wallet


def _orchestrator(wallet, miner=MINER, **kwargs) -> PaymentOrchestrator:
    return PaymentOrchestrator(
        wallet,
        dev_wallet=DEV_WALLET,
        dev_fee=100_000_000,
        miner_fee=100_000_000,
        fee_options={"priority_fee": 0},
        timeout=kwargs.pop("timeout", 5),
        choose_miner=AsyncMock(return_value=miner),
        **kwargs,
    )


class TestSettlement:
    """At least one transaction id settles the payment."""

    @pytest.mark.asyncio
    async def test_both_succeed(self):
        orchestrator = _orchestrator(_wallet(OK, OK))

        outcome = await orchestrator.run()

        assert outcome.dev_fee_txid == f"tx-{DEV_WALLET[-4:]}"
        assert outcome.miner_fee_txid == f"tx-{MINER.address[-4:]}"
        assert outcome.miner_address == MINER.address
        assert orchestrator.state == PaymentState.SETTLED

    @pytest.mark.asyncio
    async def test_dev_succeeds_miner_cancelled(self):
        outcome = await _orchestrator(_wallet(OK, CANCEL)).run()

        assert outcome.dev_fee_txid is not None
        assert outcome.miner_fee_txid is None
        assert outcome.miner_address is None
        assert outcome.settled

    @pytest.mark.asyncio
    async def test_dev_cancelled_miner_succeeds(self):
        outcome = await _orchestrator(_wallet(CANCEL, OK)).run()

        assert outcome.dev_fee_txid is None
        assert outcome.miner_fee_txid is not None
        assert outcome.miner_address == MINER.address

    @pytest.mark.asyncio
    async def test_both_cancelled_raises_payment_failed(self):
        orchestrator = _orchestrator(_wallet(CANCEL, CANCEL))

        with pytest.raises(PaymentFailed):
            await orchestrator.run()

        assert orchestrator.state == PaymentState.MINER_FEE_ATTEMPTED
        assert not orchestrator.outcome.settled

    @pytest.mark.asyncio
    async def test_dev_failure_does_not_skip_miner_step(self):
        wallet = _wallet(CANCEL, OK)

        await _orchestrator(wallet).run()

        destinations = [c.args[0] for c in wallet.transfer.await_args_list]
        assert destinations == [DEV_WALLET, MINER.address]


class TestMinerStep:

    @pytest.mark.asyncio
    async def test_empty_pool_skips_miner_transfer(self):
        wallet = _wallet(OK, OK)

        outcome = await _orchestrator(wallet, miner=None).run()

        assert outcome.miner_fee_txid is None
        assert wallet.transfer.await_count == 1

    @pytest.mark.asyncio
    async def test_empty_pool_and_dev_cancelled_fails(self):
        with pytest.raises(PaymentFailed):
            await _orchestrator(_wallet(CANCEL, OK), miner=None).run()

    @pytest.mark.asyncio
    async def test_pool_read_error_skips_miner_reward(self):
        wallet = _wallet(OK, OK)
        orchestrator = _orchestrator(wallet)
        orchestrator.choose_miner = AsyncMock(side_effect=Exception("db down"))

        outcome = await orchestrator.run()

        assert outcome.dev_fee_txid is not None
        assert outcome.miner_fee_txid is None


class TestFailureKinds:
    """Timeouts and transport errors count as an absent transaction."""

    @pytest.mark.asyncio
    async def test_timeout_is_absent(self):
        async def transfer(to_address, amount, fee_options):
            if to_address == DEV_WALLET:
                await asyncio.sleep(10)
            return "tx-miner"

        wallet = AsyncMock()
        wallet.transfer.side_effect = transfer

        outcome = await _orchestrator(wallet, timeout=0.05).run()

        assert outcome.dev_fee_txid is None
        assert outcome.miner_fee_txid == "tx-miner"

    @pytest.mark.asyncio
    async def test_transport_error_is_absent(self):
        wallet = _wallet(httpx.ConnectError("bridge down"), OK)

        outcome = await _orchestrator(wallet).run()

        assert outcome.dev_fee_txid is None
        assert outcome.miner_fee_txid is not None

    @pytest.mark.asyncio
    async def test_unexpected_error_propagates(self):
        wallet = _wallet(RuntimeError("bug"), OK)

        with pytest.raises(RuntimeError):
            await _orchestrator(wallet).run()


class TestOrchestratorConfig:

    @pytest.mark.asyncio
    async def test_amounts_and_fee_options_are_passed_to_wallet(self):
        wallet = _wallet(OK, OK)
        orchestrator = PaymentOrchestrator(
            wallet,
            dev_wallet=DEV_WALLET,
            dev_fee=111,
            miner_fee=222,
            fee_options={"priority_fee": 5},
            timeout=5,
            choose_miner=AsyncMock(return_value=MINER),
        )

        await orchestrator.run()

        calls = wallet.transfer.await_args_list
        assert calls[0].args == (DEV_WALLET, 111, {"priority_fee": 5})
        assert calls[1].args == (MINER.address, 222, {"priority_fee": 5})

    @pytest.mark.asyncio
    async def test_orchestrator_runs_only_once(self):
        orchestrator = _orchestrator(_wallet(OK, OK))
        await orchestrator.run()

        with pytest.raises(RuntimeError):
            await orchestrator.run()

    def test_missing_dev_wallet_raises(self):
        with patch.dict(os.environ, {"KASMAIL_DEV_WALLET": ""}):
            with pytest.raises(ValueError):
                get_dev_wallet()

    def test_fee_defaults_read_from_environment(self):
        env = {
            "KASMAIL_DEV_FEE_SOMPI": "42",
            "KASMAIL_MINER_FEE_SOMPI": "43",
            "KASMAIL_PRIORITY_FEE_SOMPI": "7",
            "KASMAIL_WALLET_TIMEOUT_SECONDS": "30",
        }
        with patch.dict(os.environ, env):
            orchestrator = PaymentOrchestrator(AsyncMock(), dev_wallet=DEV_WALLET)

        assert orchestrator.dev_fee == 42
        assert orchestrator.miner_fee == 43
        assert orchestrator.fee_options == {"priority_fee": 7}
        assert orchestrator.timeout == 30.0
