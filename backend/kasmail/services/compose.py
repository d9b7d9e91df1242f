"""
Compose helpers: sender display and reply drafts.
"""

from typing import Optional

from kasmail.models.message import ReplyDraft
from kasmail.services.kaspa import short_address
from kasmail.services.recipient_resolver import get_internal_domain

REPLY_PREFIX = "Re: "
QUOTE_SEPARATOR = "────────── Original message ──────────"


def sender_display(wallet_address: str, username: Optional[str], anonymous_mode: bool) -> str:
    """username@domain for public senders, the truncated address otherwise."""
    if anonymous_mode or not username:
        return short_address(wallet_address)
    return f"{username}@{get_internal_domain()}"


def reply_subject(subject: Optional[str]) -> str:
    subject = subject or ""
    if subject.startswith(REPLY_PREFIX):
        return subject
    return f"{REPLY_PREFIX}{subject.strip() or '(no subject)'}"


def build_reply_draft(original: dict) -> ReplyDraft:
    """Prefill a reply to an emails row: answer the sender, quote the body."""
    return ReplyDraft(
        to=original.get("from_wallet", ""),
        subject=reply_subject(original.get("subject")),
        body=f"\n\n{QUOTE_SEPARATOR}\n{original.get('body') or ''}",
    )
