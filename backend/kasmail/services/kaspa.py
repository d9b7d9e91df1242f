"""
Kaspa ledger access: balance oracle and wallet-signing bridge.

Balances come from the public Kaspa REST API
(GET /addresses/{address}/balance). Transfers go through a wallet bridge that
forwards the request to the sender's connected wallet and waits for the user
to confirm or dismiss the popup.

Wallet bridge contract
----------------------
POST {WALLET_BRIDGE_URL}/transfer
  {"from": str, "to": str, "amount": int, "priorityFee": int}

  200 {"txid": str}  signed and broadcast
  4xx {"error": str}  rejected or cancelled by the user

All amounts are integers in sompi.
"""

import logging
import os
import re
from typing import Optional

import httpx

logger = logging.getLogger(__name__)

# 1 KAS = 100,000,000 sompi
SOMPI_PER_KAS = 100_000_000

_DEFAULT_KASPA_API_URL = "https://api.kaspa.org"
_DEFAULT_WALLET_BRIDGE_URL = "http://localhost:8787"
_DEFAULT_HTTP_TIMEOUT = 15.0

KASPA_ADDRESS_PREFIX = "kaspa:"

# bech32 charset; 61 chars for P2PK/P2SH payloads, 63 for ECDSA
_ADDRESS_RE = re.compile(r"^kaspa:[qpzry9x8gf2tvdw0s3jn54khce6mua7l]{61,63}$")


class WalletRejected(Exception):
    """The user dismissed the wallet popup or the wallet refused to sign."""


def is_kaspa_address(value: str) -> bool:
    return bool(_ADDRESS_RE.match(value))


def short_address(address: str) -> str:
    """Truncate an address for logs and display: first 10 … last 8."""
    if len(address) <= 18:
        return address
    return f"{address[:10]}...{address[-8:]}"


def format_kas(sompi: int) -> str:
    """Render a sompi amount as KAS without going through float."""
    whole, frac = divmod(sompi, SOMPI_PER_KAS)
    if not frac:
        return f"{whole} KAS"
    return f"{whole}.{str(frac).rjust(8, '0').rstrip('0')} KAS"


class KaspaBalanceOracle:
    """Read-only balance lookups against the Kaspa REST API."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = _DEFAULT_HTTP_TIMEOUT,
    ):
        self._base_url = (base_url or os.getenv("KASPA_API_URL") or _DEFAULT_KASPA_API_URL).rstrip("/")
        self._transport = transport
        self._timeout = timeout

    async def get_balance(self, address: str) -> int:
        """
        Return the balance of ``address`` in sompi.

        Raises:
            httpx.HTTPError: oracle unreachable or non-2xx response
            ValueError: response body has no integer balance
        """
        async with httpx.AsyncClient(transport=self._transport, timeout=self._timeout) as client:
            response = await client.get(f"{self._base_url}/addresses/{address}/balance")
            response.raise_for_status()
            payload = response.json()

        balance = payload.get("balance")
        # bool is an int subclass; floats are never acceptable for sompi
        if isinstance(balance, bool) or not isinstance(balance, int):
            raise ValueError(f"Unexpected balance payload for {short_address(address)}: {payload!r}")
        return balance


class WalletBridge:
    """
    Requests user-confirmed transfers from the sender's wallet.

    ``transfer`` blocks until the user confirms or dismisses the popup; the
    caller is responsible for any overall timeout.
    """

    def __init__(
        self,
        sender_address: str,
        base_url: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.sender_address = sender_address
        self._base_url = (base_url or os.getenv("WALLET_BRIDGE_URL") or _DEFAULT_WALLET_BRIDGE_URL).rstrip("/")
        self._transport = transport

    async def transfer(self, to_address: str, amount: int, fee_options: Optional[dict] = None) -> str:
        """
        Send ``amount`` sompi to ``to_address`` and return the transaction id.

        Raises:
            WalletRejected: user cancelled or wallet refused
            httpx.HTTPError: bridge unreachable or server error
        """
        fee_options = fee_options or {}
        body = {
            "from": self.sender_address,
            "to": to_address,
            "amount": amount,
            "priorityFee": int(fee_options.get("priority_fee", 0)),
        }
        # No read timeout here: the popup waits on a human.
        async with httpx.AsyncClient(transport=self._transport, timeout=httpx.Timeout(10.0, read=None)) as client:
            response = await client.post(f"{self._base_url}/transfer", json=body)

        if 400 <= response.status_code < 500:
            try:
                payload = response.json()
            except ValueError:
                payload = None
            if isinstance(payload, dict):
                reason = payload.get("error", "rejected")
            else:
                reason = response.text or "rejected"
            raise WalletRejected(reason)
        response.raise_for_status()

        try:
            payload = response.json()
        except ValueError:
            raise WalletRejected("wallet bridge returned a non-JSON body")

        txid = payload.get("txid") if isinstance(payload, dict) else None
        if not isinstance(txid, str) or not txid:
            raise WalletRejected("wallet returned no transaction id")
        return txid
