"""
Needs engine: pure decay and clamping for the pet's five bounded needs.

Decay is computed from elapsed wall-clock minutes in a single step, so a resume
after days offline costs the same as a regular tick.
"""

from __future__ import annotations

import dataclasses
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

from .constants import (
    DEFAULT_NEEDS,
    DISTRESS_THRESHOLDS,
    ENERGY_DECAY_PER_MIN,
    FUN_DECAY_PER_MIN,
    HEALTH_DECAY_PER_MIN,
    HEALTH_RECOVERY_PER_MIN,
    HUNGER_DECAY_PER_MIN,
    HYGIENE_DECAY_PER_MIN,
    RECOVERY_THRESHOLD,
    SICKNESS_THRESHOLD,
    SLEEP_ENERGY_GAIN_PER_MIN,
    WASTE_HYGIENE_MULTIPLIER,
)

logger = logging.getLogger(__name__)

NEED_KEYS = ("hunger", "hygiene", "fun", "energy", "health")
CONSUMABLE_KEYS = ("hunger", "hygiene", "fun", "energy")


class LifecycleStatus(str, Enum):
    """Mutually exclusive lifecycle states of the pet."""

    IDLE = "idle"
    EATING = "eating"
    PLAYING = "playing"
    SOILED = "soiled"
    SLEEPING = "sleeping"
    SICK = "sick"
    DEAD = "dead"

    @classmethod
    def _missing_(cls, value: object) -> Optional["LifecycleStatus"]:
        # Older saves used "pooping"/"dirty" for the soiled state.
        if isinstance(value, str) and value.lower() in ("pooping", "dirty"):
            return cls.SOILED
        return None


class AnimationKey(str, Enum):
    """Animation ids consumed by the rendering collaborator."""

    IDLE = "idle"
    EAT = "eat"
    PLAY = "play"
    SLEEP = "sleep"
    SICK = "sick"
    POOP = "poop"
    CLEAN = "clean"
    DIE = "die"


def clamp_need(value: float) -> float:
    """Clamp a need into the closed range [0, 100]."""
    return max(0.0, min(100.0, float(value)))


@dataclass
class Needs:
    hunger: float = DEFAULT_NEEDS["hunger"]
    hygiene: float = DEFAULT_NEEDS["hygiene"]
    fun: float = DEFAULT_NEEDS["fun"]
    energy: float = DEFAULT_NEEDS["energy"]
    health: float = DEFAULT_NEEDS["health"]

    def clamped(self) -> "Needs":
        return Needs(**{key: clamp_need(getattr(self, key)) for key in NEED_KEYS})

    def to_dict(self) -> Dict[str, float]:
        return {key: getattr(self, key) for key in NEED_KEYS}

    @classmethod
    def baseline(cls, value: float) -> "Needs":
        return cls(**{key: clamp_need(value) for key in NEED_KEYS})


@dataclass
class PetState:
    """Snapshot of the pet owned by the state machine."""

    status: LifecycleStatus = LifecycleStatus.IDLE
    needs: Needs = field(default_factory=Needs)
    has_waste: bool = False
    last_tick: float = field(default_factory=time.time)
    animation: AnimationKey = AnimationKey.IDLE

    @property
    def is_dead(self) -> bool:
        return self.status is LifecycleStatus.DEAD

    def copy(self) -> "PetState":
        return dataclasses.replace(self, needs=dataclasses.replace(self.needs))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": 1,
            "status": self.status.value,
            "needs": self.needs.to_dict(),
            "hasWaste": self.has_waste,
            "lastTick": self.last_tick,
            "activeAnim": self.animation.value,
        }

    @classmethod
    def from_dict(cls, data: Any, now: Optional[float] = None) -> "PetState":
        """Rebuild a state from a persisted blob, tolerating partial or bad data."""
        if not isinstance(data, dict):
            raise ValueError("pet save must be a dict")
        raw_needs = data.get("needs") or {}
        if not isinstance(raw_needs, dict):
            raw_needs = {}
        values: Dict[str, float] = {}
        for key in NEED_KEYS:
            try:
                values[key] = clamp_need(raw_needs.get(key, DEFAULT_NEEDS[key]))
            except (TypeError, ValueError):
                values[key] = DEFAULT_NEEDS[key]
        try:
            status = LifecycleStatus(data.get("status") or data.get("pet") or "idle")
        except ValueError:
            status = LifecycleStatus.IDLE
        try:
            animation = AnimationKey(data.get("activeAnim") or "idle")
        except ValueError:
            animation = AnimationKey.IDLE
        try:
            last_tick = float(data.get("lastTick"))
        except (TypeError, ValueError):
            last_tick = now if now is not None else time.time()
        return cls(
            status=status,
            needs=Needs(**values),
            has_waste=bool(data.get("hasWaste", data.get("hasPoop", False))),
            last_tick=last_tick,
            animation=animation,
        )


def is_distressed(needs: Needs) -> bool:
    """True when any consumable need sits below its distress threshold."""
    return any(getattr(needs, key) < DISTRESS_THRESHOLDS[key] for key in CONSUMABLE_KEYS)


def decay(state: PetState, elapsed_minutes: float) -> PetState:
    """Apply ``elapsed_minutes`` of decay in one step and return the new state."""
    if state.is_dead or elapsed_minutes <= 0:
        return state.copy()

    m = float(elapsed_minutes)
    ns = state.copy()
    needs = ns.needs

    hygiene_rate = HYGIENE_DECAY_PER_MIN
    if ns.has_waste:
        hygiene_rate *= WASTE_HYGIENE_MULTIPLIER

    needs.hunger = clamp_need(needs.hunger - m * HUNGER_DECAY_PER_MIN)
    needs.hygiene = clamp_need(needs.hygiene - m * hygiene_rate)
    needs.fun = clamp_need(needs.fun - m * FUN_DECAY_PER_MIN)
    if ns.status is LifecycleStatus.SLEEPING:
        needs.energy = clamp_need(needs.energy + m * SLEEP_ENERGY_GAIN_PER_MIN)
    else:
        needs.energy = clamp_need(needs.energy - m * ENERGY_DECAY_PER_MIN)

    if is_distressed(needs):
        needs.health = clamp_need(needs.health - m * HEALTH_DECAY_PER_MIN)
    else:
        needs.health = clamp_need(needs.health + m * HEALTH_RECOVERY_PER_MIN)

    if needs.health <= 0:
        ns.status = LifecycleStatus.DEAD
        ns.animation = AnimationKey.DIE
    elif needs.health < SICKNESS_THRESHOLD:
        if ns.status is not LifecycleStatus.SICK:
            logger.debug("Pet fell sick (health=%.1f)", needs.health)
        ns.status = LifecycleStatus.SICK
        ns.animation = AnimationKey.SICK
    elif ns.status is LifecycleStatus.SICK and needs.health > RECOVERY_THRESHOLD:
        ns.status = LifecycleStatus.IDLE
        ns.animation = AnimationKey.IDLE

    return ns
