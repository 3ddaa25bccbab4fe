"""
Lives ledger: optimistic life grants reconciled against confirmed transfers.

Each record keeps the optimistic and the confirmed side apart so that merges
and rollbacks can be reasoned about independently of timing:

* ``confirmed`` – grants backed by a successful receipt or a remote read;
* ``optimistic`` – grants applied the moment a transfer was submitted;
* ``spent`` – lives consumed by deaths on this device;
* ``revoked`` – optimistic grants withdrawn at expiry that a late receipt may
  still confirm.

The visible count is ``confirmed + optimistic - spent`` (never negative).
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Set

from .constants import LIVES_KEY, PENDING_LIFE_KEY, PENDING_LIFE_TTL_SECONDS
from .events import EventBus, EventKind
from .local_store import KeyedRepository, normalise_owner, owner_key

logger = logging.getLogger(__name__)


@dataclass
class LivesRecord:
    confirmed: int = 0
    optimistic: int = 0
    spent: int = 0
    revoked: int = 0

    @property
    def count(self) -> int:
        return max(0, self.confirmed + self.optimistic - self.spent)

    def to_dict(self) -> Dict[str, int]:
        return {
            "confirmed": self.confirmed,
            "optimistic": self.optimistic,
            "spent": self.spent,
            "revoked": self.revoked,
        }

    @classmethod
    def from_value(cls, value: Any) -> "LivesRecord":
        """Read a stored record; a bare integer is treated as confirmed lives."""
        if isinstance(value, bool):
            return cls()
        if isinstance(value, (int, float)):
            return cls(confirmed=max(0, int(value)))
        if not isinstance(value, dict):
            return cls()

        def _field(name: str) -> int:
            try:
                return max(0, int(value.get(name, 0) or 0))
            except (TypeError, ValueError):
                return 0

        return cls(
            confirmed=_field("confirmed"),
            optimistic=_field("optimistic"),
            spent=_field("spent"),
            revoked=_field("revoked"),
        )


@dataclass
class PendingLifeMarker:
    """Outstanding optimistic grants for one owner.

    The marker lives until every optimistic grant is confirmed or revoked.
    ``holds_gate`` is dropped by a death so an unconfirmed life cannot be
    played twice; the marker still drives revocation at expiry.
    """

    network_id: int
    submitted_at: float
    tx_id: Optional[str] = None
    holds_gate: bool = True

    def is_expired(self, now: float, ttl: float = PENDING_LIFE_TTL_SECONDS) -> bool:
        return (now - self.submitted_at) > ttl

    def to_dict(self) -> Dict[str, Any]:
        return {
            "networkId": self.network_id,
            "submittedAt": self.submitted_at,
            "txId": self.tx_id,
            "holdsGate": self.holds_gate,
        }

    @classmethod
    def from_value(cls, value: Any) -> Optional["PendingLifeMarker"]:
        if not isinstance(value, dict):
            return None
        try:
            return cls(
                network_id=int(value.get("networkId", 0)),
                submitted_at=float(value["submittedAt"]),
                tx_id=value.get("txId"),
                holds_gate=bool(value.get("holdsGate", True)),
            )
        except (KeyError, TypeError, ValueError):
            return None


class LivesLedger:
    """Per-owner lives cache, namespaced by ``(network_id, owner)``."""

    def __init__(
        self,
        store: Any,
        *,
        bus: Optional[EventBus] = None,
        ttl_seconds: float = PENDING_LIFE_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
        logger_: Optional[logging.Logger] = None,
    ) -> None:
        self._records = KeyedRepository(store, LIVES_KEY)
        self._markers = KeyedRepository(store, PENDING_LIFE_KEY)
        self._bus = bus or EventBus()
        self._ttl = float(ttl_seconds)
        self._clock = clock
        self._logger = logger_ or logger
        self._controlled: Set[str] = set()

    # ------------------------------------------------------------------
    # Session ownership
    # ------------------------------------------------------------------

    def register_owner(self, owner: str) -> None:
        """Mark ``owner`` as a wallet the user controls in this session."""
        addr = normalise_owner(owner)
        if addr:
            self._controlled.add(addr)

    def forget_owner(self, owner: str) -> None:
        self._controlled.discard(normalise_owner(owner))

    def is_controlled(self, owner: str) -> bool:
        return normalise_owner(owner) in self._controlled

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def record(self, network_id: int, owner: Optional[str]) -> LivesRecord:
        if not normalise_owner(owner):
            return LivesRecord()
        return LivesRecord.from_value(self._records.get(owner_key(network_id, owner)))

    def get_lives(self, network_id: int, owner: Optional[str]) -> int:
        return self.record(network_id, owner).count

    def pending_marker(self, owner: Optional[str]) -> Optional[PendingLifeMarker]:
        addr = normalise_owner(owner)
        if not addr:
            return None
        return PendingLifeMarker.from_value(self._markers.get(addr))

    def has_unexpired_marker(
        self, owner: Optional[str], now: Optional[float] = None
    ) -> bool:
        marker = self.pending_marker(owner)
        if marker is None or not marker.holds_gate:
            return False
        return not marker.is_expired(self._clock() if now is None else now, self._ttl)

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def request_transfer(self, owner: Optional[str]) -> None:
        """User intent to deposit collateral; opens the transfer UI only."""
        self._bus.notify(
            EventKind.TRANSFER_REQUESTED, {"owner": normalise_owner(owner)}
        )

    def transfer_submitted(
        self,
        network_id: int,
        owner: str,
        tx_id: Optional[str] = None,
        now: Optional[float] = None,
    ) -> int:
        """Grant one optimistic life the instant the wallet accepts a transfer."""
        addr = normalise_owner(owner)
        if not addr:
            return 0
        self.register_owner(addr)
        submitted_at = self._clock() if now is None else now
        record = self.record(network_id, addr)
        record.optimistic += 1
        self._markers.set(
            addr, PendingLifeMarker(int(network_id), submitted_at, tx_id).to_dict()
        )
        self._save(network_id, addr, record)
        self._logger.info(
            "❤️ Optimistic life granted to %s (tx=%s, lives=%d)",
            addr,
            tx_id,
            record.count,
        )
        return record.count

    def transfer_confirmed(self, network_id: int, owner: str) -> int:
        """A receipt confirmed the transfer for ``owner``."""
        addr = normalise_owner(owner)
        if not self._accepts_confirmation(addr, "receipt"):
            return self.get_lives(network_id, addr)
        record = self.record(network_id, addr)
        if record.optimistic > 0:
            record.optimistic -= 1
            record.confirmed += 1
        elif record.revoked > 0:
            # Receipt arrived after the marker expired.
            record.revoked -= 1
            record.confirmed += 1
        self._release_marker(addr, record)
        self._save(network_id, addr, record)
        self._logger.info(
            "✅ Life transfer confirmed for %s (lives=%d)", addr, record.count
        )
        return record.count

    def transfer_failed(self, network_id: int, owner: str) -> None:
        """The receipt reported failure; the pending marker is left to expire."""
        addr = normalise_owner(owner)
        self._logger.warning(
            "Life transfer for %s failed on-chain; optimistic life lapses after %ss",
            addr,
            int(self._ttl),
        )
        self._bus.status("Transaction failed.", level="error")

    def remote_lives_observed(self, network_id: int, owner: str, count: int) -> int:
        """Merge a remote life count: the visible value never goes down."""
        addr = normalise_owner(owner)
        if not self._accepts_confirmation(addr, "remote count"):
            return self.get_lives(network_id, addr)
        try:
            remote = max(0, int(count))
        except (TypeError, ValueError):
            self._logger.warning("Ignoring malformed remote life count %r", count)
            return self.get_lives(network_id, addr)
        record = self.record(network_id, addr)
        before = record.count
        if remote > record.confirmed:
            increase = remote - record.confirmed
            absorbed = min(record.optimistic, increase)
            record.optimistic -= absorbed
            record.revoked -= min(record.revoked, increase - absorbed)
            record.confirmed = remote
        self._release_marker(addr, record)
        self._save(network_id, addr, record)
        if record.count != before:
            self._logger.info(
                "🔄 Remote lives for %s: %d -> %d", addr, before, record.count
            )
        return record.count

    def consume_life(self, network_id: int, owner: Optional[str]) -> int:
        """Spend exactly one life after a death (clamped at zero)."""
        addr = normalise_owner(owner)
        if not addr:
            return 0
        record = self.record(network_id, addr)
        if record.count > 0:
            record.spent += 1
        # The pending life, if any, is the one that was just lost.
        marker = self.pending_marker(addr)
        if marker is not None and marker.holds_gate:
            marker.holds_gate = False
            self._markers.set(addr, marker.to_dict())
        self._save(network_id, addr, record)
        self._bus.notify(
            EventKind.LIFE_SPENT, {"owner": addr, "lives": record.count}
        )
        self._logger.info("💔 Life spent for %s (lives=%d)", addr, record.count)
        return record.count

    def expire_pending(self, network_id: int, owner: Optional[str], now: Optional[float] = None) -> bool:
        """Revoke unconfirmed optimistic grants once the marker outlives its TTL."""
        addr = normalise_owner(owner)
        marker = self.pending_marker(addr)
        if marker is None:
            return False
        current = self._clock() if now is None else now
        if not marker.is_expired(current, self._ttl):
            return False
        record = self.record(network_id, addr)
        revoked = record.optimistic
        record.optimistic = 0
        record.revoked += revoked
        self._markers.delete(addr)
        self._save(network_id, addr, record)
        self._logger.warning(
            "⌛ Pending life for %s expired unconfirmed; revoked %d optimistic grant(s)",
            addr,
            revoked,
        )
        return True

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _accepts_confirmation(self, addr: str, source: str) -> bool:
        if not addr:
            return False
        if addr not in self._controlled:
            self._logger.warning(
                "Ignoring %s for %s: wallet not controlled in this session",
                source,
                addr,
            )
            return False
        return True

    def _release_marker(self, addr: str, record: LivesRecord) -> None:
        if record.optimistic == 0:
            self._markers.delete(addr)

    def _save(self, network_id: int, addr: str, record: LivesRecord) -> None:
        if not self._records.set(owner_key(network_id, addr), record.to_dict()):
            self._logger.warning(
                "Lives for %s not persisted; continuing in memory", addr
            )
        self._bus.notify(
            EventKind.LIVES_UPDATED,
            {"owner": addr, "networkId": int(network_id), "lives": record.count},
        )
