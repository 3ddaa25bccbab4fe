"""
WOOL reward ledger with a daily cap and signed, idempotent collection.

Every attempt is applied locally first, then confirmed or rolled back against
the reward authority. Remote responses are merged with max semantics so a
stale read never clobbers a newer local value.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, Set

from .constants import ADULT_STAGE, COLLECT_COOLDOWN_SECONDS, DAILY_CAP, WOOL_PREFIX
from .events import EventBus, EventKind
from .local_store import normalise_owner
from .remote_api import CollectResponse, RemoteLedgerView, RewardApiError
from .signed_request import (
    SignFn,
    SigningError,
    build_collection_request,
    day_key_from_timestamp,
)

logger = logging.getLogger(__name__)

ChainClock = Callable[[], Awaitable[Optional[float]]]


class CollectionOutcome(str, Enum):
    COLLECTED = "collected"
    NO_WALLET = "no_wallet"
    DISABLED = "disabled"
    IN_FLIGHT = "in_flight"
    CAPPED = "capped"
    SIGNATURE_FAILED = "signature_failed"
    REMOTE_ERROR = "remote_error"
    REJECTED = "rejected"
    REMOTE_CAPPED = "remote_capped"


@dataclass(frozen=True)
class CollectionResult:
    collected: bool
    outcome: CollectionOutcome
    total: int = 0
    collected_today: int = 0
    day_key: Optional[str] = None
    error: Optional[str] = None


@dataclass
class WoolLedger:
    total: int = 0
    days: Dict[str, int] = field(default_factory=dict)

    def day(self, day_key: str) -> int:
        return self.days.get(day_key, 0)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "days": {key: {"collected": value} for key, value in self.days.items()},
        }

    @classmethod
    def from_value(cls, value: Any) -> "WoolLedger":
        if not isinstance(value, dict):
            return cls()
        try:
            total = max(0, int(value.get("total", 0) or 0))
        except (TypeError, ValueError):
            return cls()
        days: Dict[str, int] = {}
        raw_days = value.get("days")
        if isinstance(raw_days, dict):
            for key, entry in raw_days.items():
                raw = entry.get("collected") if isinstance(entry, dict) else entry
                try:
                    days[str(key)] = max(0, int(raw or 0))
                except (TypeError, ValueError):
                    continue
        return cls(total=total, days=days)


def wool_key(owner: str) -> str:
    return f"{WOOL_PREFIX}::{normalise_owner(owner)}"


class RewardLedger:
    """Per-owner WOOL cache plus the collection protocol against the authority."""

    def __init__(
        self,
        store: Any,
        authority: Any,
        *,
        bus: Optional[EventBus] = None,
        chain_clock: Optional[ChainClock] = None,
        daily_cap: int = DAILY_CAP,
        cooldown_seconds: float = COLLECT_COOLDOWN_SECONDS,
        test_mode: bool = False,
        local_clock: Callable[[], float] = time.time,
        logger_: Optional[logging.Logger] = None,
    ) -> None:
        self._store = store
        self._authority = authority
        self._bus = bus or EventBus()
        self._chain_clock = chain_clock
        self.daily_cap = max(1, int(daily_cap))
        self._cooldown = max(0.0, float(cooldown_seconds))
        self._test_mode = bool(test_mode)
        self._local_clock = local_clock
        self._logger = logger_ or logger

        self._owner = ""
        self._network_id = 0
        self._sign: Optional[SignFn] = None
        self._stage_enabled = False
        self._forced = False
        self._in_flight: Set[str] = set()
        self._cooldown_until: Dict[str, float] = {}
        self._cache: Dict[str, WoolLedger] = {}
        self.day_key = day_key_from_timestamp(self._local_clock())

    # ------------------------------------------------------------------
    # Wiring
    # ------------------------------------------------------------------

    def set_owner(
        self, owner: Optional[str], network_id: int, sign: Optional[SignFn] = None
    ) -> None:
        addr = normalise_owner(owner)
        if addr != self._owner:
            # Stage and force belong to the previous owner's pet.
            self._stage_enabled = False
            self._forced = False
        self._owner = addr
        self._network_id = int(network_id)
        self._sign = sign
        self._notify()

    def set_stage(self, stage: Optional[str]) -> None:
        """Consume the external pet-stage signal; only adults may collect."""
        enabled = (stage or "").strip().lower() == ADULT_STAGE
        if enabled != self._stage_enabled:
            self._logger.info("[WOOL] stage %r -> enabled=%s", stage, enabled)
        self._stage_enabled = enabled
        self._notify()

    def force_enable(self, on: bool) -> bool:
        """Debug switch to bypass the stage gate; only honoured in test mode."""
        if not self._test_mode:
            self._logger.warning("[WOOL] force enable refused outside test mode")
            return False
        self._forced = bool(on)
        self._logger.info("[WOOL] force set -> %s", self._forced)
        self._notify()
        return True

    @property
    def enabled(self) -> bool:
        return self._stage_enabled or (self._test_mode and self._forced)

    @property
    def owner(self) -> str:
        return self._owner

    # ------------------------------------------------------------------
    # Local ledger
    # ------------------------------------------------------------------

    def ledger(self, owner: Optional[str] = None) -> WoolLedger:
        addr = normalise_owner(owner) if owner is not None else self._owner
        if not addr:
            return WoolLedger()
        if addr not in self._cache:
            self._cache[addr] = WoolLedger.from_value(self._store.get(wool_key(addr)))
        cached = self._cache[addr]
        return WoolLedger(total=cached.total, days=dict(cached.days))

    def _save(self, owner: str, ledger: WoolLedger) -> None:
        # The in-memory view stays authoritative for the session if the write fails.
        self._cache[owner] = WoolLedger(total=ledger.total, days=dict(ledger.days))
        if not self._store.set(wool_key(owner), ledger.to_dict()):
            self._logger.warning("[WOOL] ledger for %s not persisted", owner)
        if owner == self._owner:
            self._notify()

    def snapshot(self) -> Dict[str, Any]:
        ledger = self.ledger()
        collected = max(0, min(self.daily_cap, ledger.day(self.day_key)))
        return {
            "owner": self._owner,
            "dayKey": self.day_key,
            "total": ledger.total,
            "collectedToday": collected,
            "remainingToday": max(0, self.daily_cap - collected),
            "cap": self.daily_cap,
            "enabled": self.enabled,
        }

    def _notify(self) -> None:
        self._bus.notify(EventKind.COLLECTION_UPDATED, self.snapshot())

    # ------------------------------------------------------------------
    # Day key
    # ------------------------------------------------------------------

    async def current_day_key(self) -> str:
        """Day key from authoritative chain time, local clock as fallback."""
        ts: Optional[float] = None
        if self._chain_clock is not None:
            try:
                ts = await self._chain_clock()
            except Exception as exc:
                self._logger.debug("[WOOL] chain time unavailable: %s", exc)
                ts = None
        if ts is None:
            ts = self._local_clock()
        return day_key_from_timestamp(ts)

    async def refresh_day_key(self) -> str:
        key = await self.current_day_key()
        if key != self.day_key:
            self._logger.info("[WOOL] day rollover %s -> %s", self.day_key, key)
            self.day_key = key
            self._notify()
        return key

    # ------------------------------------------------------------------
    # Collection protocol
    # ------------------------------------------------------------------

    def _is_busy(self, owner: str) -> bool:
        if owner in self._in_flight:
            return True
        return time.monotonic() < self._cooldown_until.get(owner, 0.0)

    async def request_collection(self) -> CollectionResult:
        """Collect one WOOL for the active owner."""
        owner = self._owner
        network_id = self._network_id
        if not owner:
            self._logger.warning("[WOOL] wallet not connected")
            return self._result(False, CollectionOutcome.NO_WALLET, owner)
        if not self.enabled:
            self._logger.info("[WOOL] collect blocked: not enabled")
            return self._result(False, CollectionOutcome.DISABLED, owner)
        if self._is_busy(owner):
            self._logger.info("[WOOL] collect debounced")
            return self._result(False, CollectionOutcome.IN_FLIGHT, owner)

        # Claimed before the first await so a concurrent call sees it.
        self._in_flight.add(owner)
        try:
            return await self._collect(owner, network_id, self._sign)
        finally:
            self._in_flight.discard(owner)
            self._cooldown_until[owner] = time.monotonic() + self._cooldown

    async def _collect(
        self, owner: str, network_id: int, sign: Optional[SignFn]
    ) -> CollectionResult:
        day_key = await self.current_day_key()
        if day_key != self.day_key:
            self._logger.info("[WOOL] day rollover %s -> %s", self.day_key, day_key)
            self.day_key = day_key

        current = self.ledger(owner)
        if current.day(day_key) >= self.daily_cap:
            self._logger.info("[WOOL] reached DAILY_CAP %d", self.daily_cap)
            return self._result(False, CollectionOutcome.CAPPED, owner, day_key)

        current.days[day_key] = current.day(day_key) + 1
        current.total += 1
        self._save(owner, current)

        if sign is None:
            self._rollback(owner, day_key)
            self._bus.status("Wallet unavailable for signing.", level="error")
            return self._result(
                False, CollectionOutcome.SIGNATURE_FAILED, owner, day_key, "no signer"
            )

        try:
            request = await build_collection_request(sign, owner, network_id, day_key)
        except SigningError as exc:
            self._logger.warning("[WOOL] signature declined: %s", exc)
            self._rollback(owner, day_key)
            self._bus.status("Collection cancelled: signature declined.", level="error")
            return self._result(
                False, CollectionOutcome.SIGNATURE_FAILED, owner, day_key, str(exc)
            )

        try:
            response: CollectResponse = await self._authority.collect(request)
        except RewardApiError as exc:
            return self._fail(owner, day_key, CollectionOutcome.REMOTE_ERROR, str(exc))
        except Exception as exc:
            self._logger.error("[WOOL] apiCollect error: %s", exc)
            return self._fail(owner, day_key, CollectionOutcome.REMOTE_ERROR, str(exc))

        if not response.accepted:
            return self._fail(
                owner, day_key, CollectionOutcome.REJECTED, response.error or "rejected"
            )

        if response.capped:
            self._logger.info("[WOOL] server reports day capped; not collected")
            self._rollback(owner, day_key)
            self._merge(owner, response.day_key or day_key, response.day_count, response.total)
            self._bus.status("Daily WOOL limit reached.", level="info")
            return self._result(False, CollectionOutcome.REMOTE_CAPPED, owner, day_key)

        self._merge(owner, response.day_key or day_key, response.day_count, response.total)
        self._logger.info("[WOOL] server ok: request=%s", request.request_id)
        return self._result(True, CollectionOutcome.COLLECTED, owner, day_key)

    def _fail(
        self, owner: str, day_key: str, outcome: CollectionOutcome, error: str
    ) -> CollectionResult:
        self._logger.warning("[WOOL] server rejected (%s); rolling back", error)
        self._rollback(owner, day_key)
        self._bus.status("WOOL not collected, try again.", level="error")
        return self._result(False, outcome, owner, day_key, error)

    def _rollback(self, owner: str, day_key: str) -> None:
        ledger = self.ledger(owner)
        ledger.days[day_key] = max(0, ledger.day(day_key) - 1)
        ledger.total = max(0, ledger.total - 1)
        self._save(owner, ledger)

    def _merge(
        self,
        owner: str,
        day_key: str,
        remote_day_count: Optional[int],
        remote_total: Optional[int],
    ) -> WoolLedger:
        """Merge-max a remote view into the local ledger; never decreases."""
        ledger = self.ledger(owner)
        if remote_day_count is not None:
            merged = max(ledger.day(day_key), min(self.daily_cap, remote_day_count))
            ledger.days[day_key] = merged
        if remote_total is not None:
            ledger.total = max(ledger.total, remote_total)
        self._save(owner, ledger)
        return ledger

    async def bootstrap(self) -> Optional[WoolLedger]:
        """Seed the local view from the authority's read endpoint."""
        owner = self._owner
        if not owner or self._authority is None:
            return None
        try:
            view: Optional[RemoteLedgerView] = await self._authority.fetch_ledger(
                owner, self._network_id
            )
        except Exception as exc:
            self._logger.warning("[WOOL] bootstrap failed: %s", exc)
            return None
        if view is None:
            return None
        return self._merge(owner, view.day_key or self.day_key, view.day_count, view.total)

    def _result(
        self,
        collected: bool,
        outcome: CollectionOutcome,
        owner: str,
        day_key: Optional[str] = None,
        error: Optional[str] = None,
    ) -> CollectionResult:
        key = day_key or self.day_key
        ledger = self.ledger(owner) if owner else WoolLedger()
        return CollectionResult(
            collected=collected,
            outcome=outcome,
            total=ledger.total,
            collected_today=ledger.day(key),
            day_key=key,
            error=error,
        )
