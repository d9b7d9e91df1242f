"""
Recipient resolution.

Turns the free-text "To" field into a RecipientTarget according to the
sender's mode:

  only_internal=True   kaspa:... address       → InternalAddress (as typed)
                       alice / alice@<domain>  → directory lookup → InternalAddress
                       anything else with '@'  → PolicyViolation
  only_internal=False  bob@gmail.com           → ExternalAddress
                       anything internal       → PolicyViolation

Username lookups are exact and case-sensitive. Both error kinds are terminal
for the dispatch.
"""

import logging
import os
import re
from typing import Awaitable, Callable, Optional

from fastapi.concurrency import run_in_threadpool

from kasmail.db import supabase_admin
from kasmail.errors import PolicyViolation, RecipientNotFound
from kasmail.models.dispatch import (
    ExternalAddress,
    InternalAddress,
    RecipientTarget,
    SenderIdentity,
    SendPreferences,
)
from kasmail.services.kaspa import KASPA_ADDRESS_PREFIX, is_kaspa_address, short_address

logger = logging.getLogger(__name__)

DEFAULT_INTERNAL_DOMAIN = "kasmail.com"

_USERNAME_RE = re.compile(r"^[a-zA-Z0-9_]{3,20}$")


def get_internal_domain() -> str:
    return os.getenv("KASMAIL_INTERNAL_DOMAIN", DEFAULT_INTERNAL_DOMAIN).lower()


def _has_internal_suffix(value: str, domain: str) -> bool:
    # Domains compare case-insensitively; the local part is left untouched.
    return value.lower().endswith("@" + domain)


def _lookup_username_sync(username: str) -> Optional[str]:
    if not supabase_admin:
        raise ValueError("SUPABASE_SERVICE_KEY is required for directory lookups")

    result = (
        supabase_admin.table("profiles")
        .select("wallet_address")
        .eq("username", username)
        .limit(1)
        .execute()
    )
    if result.data:
        return result.data[0].get("wallet_address")
    return None


async def lookup_username(username: str) -> Optional[str]:
    """Return the wallet address registered for ``username`` or None."""
    return await run_in_threadpool(_lookup_username_sync, username)


async def _resolve_username(
    username: str,
    lookup: Callable[[str], Awaitable[Optional[str]]],
) -> InternalAddress:
    if not _USERNAME_RE.match(username):
        raise RecipientNotFound(f"No KasMail user named '{username}'")

    address = await lookup(username)
    if not address:
        raise RecipientNotFound(f"No KasMail user named '{username}'")
    if not is_kaspa_address(address):
        # Directory rows are written by the settings flow; a malformed one is
        # not something the sender can fix.
        raise RecipientNotFound(f"KasMail user '{username}' has no valid wallet address")
    return InternalAddress(address=address)


async def resolve_recipient(
    raw: str,
    preferences: SendPreferences,
    sender: Optional[SenderIdentity] = None,
    lookup: Callable[[str], Awaitable[Optional[str]]] = lookup_username,
) -> RecipientTarget:
    """
    Classify and normalize a recipient string.

    Raises:
        PolicyViolation: recipient shape disagrees with ``only_internal``
        RecipientNotFound: username has no directory entry
    """
    value = (raw or "").strip()
    if not value:
        raise PolicyViolation("Recipient is required")

    domain = get_internal_domain()

    if preferences.only_internal:
        if "@" in value:
            if not _has_internal_suffix(value, domain):
                raise PolicyViolation(
                    f"External addresses are disabled. Send to a Kaspa address or username@{domain}."
                )
            target = await _resolve_username(value[: -(len(domain) + 1)], lookup)
        elif value.startswith(KASPA_ADDRESS_PREFIX):
            if not is_kaspa_address(value):
                raise PolicyViolation(f"'{value}' is not a valid Kaspa address")
            target = InternalAddress(address=value)
        else:
            target = await _resolve_username(value, lookup)
    else:
        if value.count("@") != 1 or _has_internal_suffix(value, domain):
            raise PolicyViolation(
                "External mode is on. Send to a regular email address or disable external mode."
            )
        local, _, host = value.partition("@")
        if not local or not host:
            raise PolicyViolation(f"'{value}' is not a valid email address")
        target = ExternalAddress(email=value)

    sender_label = short_address(sender.address) if sender else "unknown"
    logger.info(f"Resolved recipient for {sender_label} as {type(target).__name__}")
    return target
