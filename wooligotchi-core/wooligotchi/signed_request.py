"""
Signed collection requests for the WOOL reward authority.

A request binds the owner, network, UTC day and a fresh random request id into
a canonical text message, then asks the owner's key for an EIP-191
``personal_sign`` signature over it. The request id doubles as the
idempotency token on the remote side.
"""

from __future__ import annotations

import inspect
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Optional, Union

from eth_account import Account
from eth_account.messages import encode_defunct
from eth_account.signers.local import LocalAccount

logger = logging.getLogger(__name__)

MESSAGE_HEADER = "Wooligotchi collect"

SignFn = Callable[[str], Union[str, Awaitable[str]]]


def day_key_from_timestamp(ts: float) -> str:
    """Return the UTC ``YYYYMMDD`` day key for an epoch timestamp."""
    return datetime.fromtimestamp(float(ts), tz=timezone.utc).strftime("%Y%m%d")


def build_collection_message(
    owner: str, network_id: int, day_key: str, request_id: str
) -> str:
    """Canonical text signed by the owner for a single collection attempt."""
    return (
        f"{MESSAGE_HEADER}\n"
        f"address:{owner}\n"
        f"chain:{int(network_id)}\n"
        f"yyyymmdd:{day_key}\n"
        f"request:{request_id}"
    )


@dataclass(frozen=True)
class CollectionRequest:
    owner: str
    network_id: int
    day_key: str
    request_id: str
    message: str
    signature: str

    def to_payload(self) -> Dict[str, Any]:
        """JSON body expected by the reward authority's collect endpoint."""
        return {
            "address": self.owner,
            "chainId": self.network_id,
            "dayKey": self.day_key,
            "requestId": self.request_id,
            "message": self.message,
            "signature": self.signature,
        }


class SigningError(Exception):
    """The owner's key declined or failed to sign a message."""


async def build_collection_request(
    sign: SignFn,
    owner: str,
    network_id: int,
    day_key: str,
    request_id: Optional[str] = None,
) -> CollectionRequest:
    """Build the canonical message and obtain the owner's signature over it."""
    rid = request_id or str(uuid.uuid4())
    message = build_collection_message(owner, network_id, day_key, rid)
    logger.debug(
        "[WOOL] signMessage -> owner=%s chain=%s day=%s request=%s",
        owner,
        network_id,
        day_key,
        rid,
    )
    try:
        result = sign(message)
        if inspect.isawaitable(result):
            result = await result
    except SigningError:
        raise
    except Exception as exc:
        raise SigningError(f"signature request failed: {exc}") from exc
    signature = str(result or "").strip()
    if not signature:
        raise SigningError("empty signature")
    return CollectionRequest(
        owner=owner,
        network_id=int(network_id),
        day_key=day_key,
        request_id=rid,
        message=message,
        signature=signature,
    )


def recover_signer(message: str, signature: str) -> str:
    """Return the lowercased address that produced ``signature`` over ``message``."""
    address = Account.recover_message(encode_defunct(text=message), signature=signature)
    return address.lower()


class LocalKeySigner:
    """Signs messages with a locally held private key."""

    def __init__(self, private_key: str) -> None:
        key = (private_key or "").strip()
        if not key:
            raise ValueError("missing private key")
        if not key.startswith("0x"):
            key = f"0x{key}"
        self._account: LocalAccount = Account.from_key(key)

    @property
    def address(self) -> str:
        return self._account.address

    def sign_message(self, message: str) -> str:
        signed = self._account.sign_message(encode_defunct(text=message))
        return "0x" + bytes(signed.signature).hex()
