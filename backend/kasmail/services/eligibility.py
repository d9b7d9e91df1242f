"""
Sender eligibility gate.

A sender may only dispatch while holding at least the minimum balance. The
check is read-only and fails closed: if the balance oracle cannot be reached
the sender is treated as ineligible.
"""

import logging
import os

from kasmail.models.dispatch import EligibilityResult, SenderIdentity
from kasmail.services.kaspa import SOMPI_PER_KAS, format_kas, short_address

logger = logging.getLogger(__name__)

DEFAULT_MIN_BALANCE_SOMPI = SOMPI_PER_KAS


def get_min_balance_sompi() -> int:
    """Return the eligibility threshold in sompi (KASMAIL_MIN_BALANCE_SOMPI)."""
    return int(os.getenv("KASMAIL_MIN_BALANCE_SOMPI", DEFAULT_MIN_BALANCE_SOMPI))


def evaluate_balance(balance: int, threshold: int) -> EligibilityResult:
    """Pure comparison: eligible when ``balance >= threshold``."""
    if balance >= threshold:
        return EligibilityResult(eligible=True, balance=balance)
    return EligibilityResult(
        eligible=False,
        balance=balance,
        reason=f"Minimum {format_kas(threshold)} required to send messages",
    )


async def check_eligibility(sender_address: str, oracle, threshold: int | None = None) -> tuple[SenderIdentity, EligibilityResult]:
    """
    Fetch the sender's current balance and compare it to the threshold.

    The balance is fetched on every call; it is never cached between
    dispatches.

    Returns:
        (SenderIdentity with the fresh balance, EligibilityResult)
    """
    if threshold is None:
        threshold = get_min_balance_sompi()

    try:
        balance = await oracle.get_balance(sender_address)
    except Exception as e:
        logger.warning(f"Balance oracle failed for {short_address(sender_address)}: {e}")
        return (
            SenderIdentity(address=sender_address, balance=0),
            EligibilityResult(
                eligible=False,
                balance=0,
                reason="Could not verify wallet balance. Please try again.",
            ),
        )

    result = evaluate_balance(balance, threshold)
    logger.info(
        f"Eligibility for {short_address(sender_address)}: balance={balance} "
        f"threshold={threshold} eligible={result.eligible}"
    )
    return SenderIdentity(address=sender_address, balance=balance), result
