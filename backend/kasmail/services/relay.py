"""
Outbound relay for external recipients.

Messages to conventional email addresses leave KasMail through a mail relay
instead of (only) the emails table. The router builds a provider-agnostic
RelayRequest; only the relay class knows the provider's wire format.

Supported providers:
  - resend  (default; set EMAIL_PROVIDER=resend)

Adding a new provider:
  1. Write a class with ``async send(request: RelayRequest) -> str``.
  2. Register it in _RELAYS.
  3. Set EMAIL_PROVIDER=<provider> in the environment.
"""

import logging
import os
from typing import Optional

import httpx
from pydantic import BaseModel

from kasmail.errors import RelayFailed
from kasmail.models.dispatch import ExternalAddress
from kasmail.services.recipient_resolver import get_internal_domain

logger = logging.getLogger(__name__)

_DEFAULT_RESEND_API_URL = "https://api.resend.com"


class RelayRequest(BaseModel):
    """Transport-agnostic outbound email."""
    from_address: str
    to: str
    subject: str
    body: str


class RelayError(Exception):
    """The relay answered with a non-success response."""


def relay_from_address(username: Optional[str], anonymous_mode: bool = False) -> str:
    """
    Sender address used on the relay.

    Public usernames send as username@<internal domain>; anonymous senders and
    senders without a username use KASMAIL_RELAY_FALLBACK_FROM.
    """
    if username and not anonymous_mode:
        return f"{username}@{get_internal_domain()}"
    return os.getenv("KASMAIL_RELAY_FALLBACK_FROM") or f"anonymous@{get_internal_domain()}"


class ResendRelay:
    """Resend.com HTTP API (POST /emails)."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = 15.0,
    ):
        self._api_key = api_key or os.getenv("RESEND_API_KEY")
        self._base_url = (base_url or os.getenv("RESEND_API_URL") or _DEFAULT_RESEND_API_URL).rstrip("/")
        self._transport = transport
        self._timeout = timeout

    async def send(self, request: RelayRequest) -> str:
        """
        Submit the message and return the provider's message id.

        Raises:
            RelayError: non-success response
            httpx.HTTPError: transport failure
        """
        if not self._api_key:
            raise ValueError("RESEND_API_KEY must be set to send external email")

        payload = {
            "from": request.from_address,
            "to": [request.to],
            "subject": request.subject,
            "text": request.body,
        }
        async with httpx.AsyncClient(transport=self._transport, timeout=self._timeout) as client:
            response = await client.post(
                f"{self._base_url}/emails",
                json=payload,
                headers={"Authorization": f"Bearer {self._api_key}"},
            )

        if response.status_code >= 300:
            raise RelayError(f"Resend returned {response.status_code}: {response.text}")
        # The message is already accepted; an unreadable body only loses the id.
        try:
            payload = response.json()
        except ValueError:
            logger.warning("Resend accepted the message but returned a non-JSON body")
            return ""
        message_id = payload.get("id") if isinstance(payload, dict) else None
        return message_id if isinstance(message_id, str) else ""


_RELAYS = {
    "resend": ResendRelay,
}


def get_relay(provider: Optional[str] = None):
    """
    Build the relay for ``provider`` or the EMAIL_PROVIDER env var
    (default: "resend").

    Raises ValueError for unknown provider names.
    """
    resolved = (provider or os.getenv("EMAIL_PROVIDER", "resend")).lower().strip()
    relay_cls = _RELAYS.get(resolved)
    if relay_cls is None:
        raise ValueError(
            f"Unknown email provider {resolved!r}. "
            f"Supported providers: {sorted(_RELAYS)}"
        )
    return relay_cls()


async def deliver_external(
    target: ExternalAddress,
    from_address: str,
    subject: str,
    body: str,
    relay,
) -> str:
    """
    Hand an external message to the relay.

    Returns:
        The relay's message id.

    Raises:
        RelayFailed: the relay refused the message or could not be reached
    """
    request = RelayRequest(from_address=from_address, to=target.email, subject=subject, body=body)
    try:
        relay_id = await relay.send(request)
    except (RelayError, httpx.HTTPError) as e:
        logger.error(f"Relay delivery to {target.email} failed: {e}")
        raise RelayFailed(f"External delivery failed: {str(e)}", cause=e)

    logger.info(f"Relayed external message to {target.email} (relay id={relay_id!r})")
    return relay_id
