"""Gate decision: which UI phase is shown and whether the simulation may run."""

from __future__ import annotations

import logging
from enum import Enum
from typing import Optional

from .lives_ledger import LivesLedger
from .local_store import normalise_owner

logger = logging.getLogger(__name__)


class GatePhase(str, Enum):
    NO_WALLET = "no-wallet"
    NO_LIVES = "no-lives"
    PLAYABLE = "playable"


def decide_phase(
    connected: bool,
    lives: int,
    has_pending_life: bool,
    force_playable: bool = False,
) -> GatePhase:
    """Derive the phase from connection and lives state."""
    if not connected:
        return GatePhase.NO_WALLET
    if force_playable:
        return GatePhase.PLAYABLE
    if lives <= 0 and not has_pending_life:
        return GatePhase.NO_LIVES
    return GatePhase.PLAYABLE


class Gate:
    """Evaluates the phase for the active owner against a ``LivesLedger``.

    ``force_playable`` is a debug affordance honoured only in test mode; it is
    transient and never survives an owner switch or a death.
    """

    def __init__(self, ledger: LivesLedger, *, test_mode: bool = False) -> None:
        self._ledger = ledger
        self._test_mode = bool(test_mode)
        self._owner: str = ""
        self._force_playable = False

    @property
    def owner(self) -> str:
        return self._owner

    def set_owner(self, owner: Optional[str]) -> None:
        addr = normalise_owner(owner)
        if addr != self._owner:
            if self._force_playable:
                logger.debug("Clearing force flag on owner switch to %s", addr or "-")
            self._force_playable = False
        self._owner = addr

    def force_playable(self) -> bool:
        if not self._test_mode:
            logger.warning("Refusing to force the playable phase outside test mode")
            return False
        if not self._owner:
            return False
        self._force_playable = True
        return True

    def clear_force(self) -> None:
        self._force_playable = False

    def phase(self, network_id: int, now: Optional[float] = None) -> GatePhase:
        if not self._owner:
            return GatePhase.NO_WALLET
        self._ledger.expire_pending(network_id, self._owner, now)
        lives = self._ledger.get_lives(network_id, self._owner)
        pending = self._ledger.has_unexpired_marker(self._owner, now)
        return decide_phase(True, lives, pending, self._force_playable)

    def is_playable(self, network_id: int, now: Optional[float] = None) -> bool:
        return self.phase(network_id, now) is GatePhase.PLAYABLE
