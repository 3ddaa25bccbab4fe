"""
Pet state machine: a reducer over ticks and user actions with durable saves.

The reducer itself is pure; ``PetStateMachine`` wraps it with persistence to
the local store and event notifications for the rendering/audio layers.
"""

from __future__ import annotations

import asyncio
import logging
import random
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, List, Optional, Union

from .constants import (
    CLEAN_BONUS,
    DEFAULT_TICK_MS,
    FEED_BONUS,
    HEAL_BONUS,
    PET_SAVE_PREFIX,
    PLAY_BONUS,
    PLAY_ENERGY_COST,
    REVIVE_BASELINE,
    WASTE_CHANCE_PER_MIN,
)
from .events import EventBus, EventKind
from .needs_engine import (
    AnimationKey,
    LifecycleStatus,
    Needs,
    PetState,
    clamp_need,
    decay,
)

logger = logging.getLogger(__name__)


class ActionKind(str, Enum):
    FEED = "feed"
    PLAY = "play"
    SLEEP = "sleep"
    CLEAN = "clean"
    HEAL = "heal"


@dataclass(frozen=True)
class Tick:
    now: float


@dataclass(frozen=True)
class Action:
    kind: ActionKind


@dataclass(frozen=True)
class SetAnimation:
    key: AnimationKey


@dataclass(frozen=True)
class Revive:
    now: float


PetEvent = Union[Tick, Action, SetAnimation, Revive]


def pet_save_key(network_id: int, owner: Optional[str]) -> str:
    """Save slot key for one owner's pet on one network."""
    return f"{PET_SAVE_PREFIX}::{int(network_id)}:{(owner or 'none').lower()}"


def _apply_action(ns: PetState, kind: ActionKind) -> PetState:
    needs = ns.needs
    if kind is ActionKind.FEED:
        needs.hunger = clamp_need(needs.hunger + FEED_BONUS)
        ns.status, ns.animation = LifecycleStatus.EATING, AnimationKey.EAT
    elif kind is ActionKind.PLAY:
        needs.fun = clamp_need(needs.fun + PLAY_BONUS)
        needs.energy = clamp_need(needs.energy - PLAY_ENERGY_COST)
        ns.status, ns.animation = LifecycleStatus.PLAYING, AnimationKey.PLAY
    elif kind is ActionKind.SLEEP:
        if ns.status is LifecycleStatus.SLEEPING:
            ns.status, ns.animation = LifecycleStatus.IDLE, AnimationKey.IDLE
        else:
            ns.status, ns.animation = LifecycleStatus.SLEEPING, AnimationKey.SLEEP
    elif kind is ActionKind.CLEAN:
        ns.has_waste = False
        needs.hygiene = clamp_need(needs.hygiene + CLEAN_BONUS)
        ns.status, ns.animation = LifecycleStatus.IDLE, AnimationKey.CLEAN
    elif kind is ActionKind.HEAL:
        needs.health = clamp_need(needs.health + HEAL_BONUS)
        ns.status, ns.animation = LifecycleStatus.IDLE, AnimationKey.SICK
    return ns


def reduce(
    state: PetState, event: PetEvent, rng: Optional[random.Random] = None
) -> PetState:
    """Return the next state for ``event``; the input state is never mutated."""
    if state.is_dead and not isinstance(event, Revive):
        return state

    if isinstance(event, Tick):
        if event.now <= state.last_tick:
            return state
        ns = state.copy()
        minutes = (event.now - ns.last_tick) / 60.0
        ns.last_tick = event.now
        roll = (rng or random).random()
        if not ns.has_waste and roll < WASTE_CHANCE_PER_MIN * minutes:
            ns.has_waste = True
            if ns.status not in (LifecycleStatus.SLEEPING, LifecycleStatus.SICK):
                ns.status, ns.animation = LifecycleStatus.SOILED, AnimationKey.POOP
        return decay(ns, minutes)

    if isinstance(event, Action):
        return _apply_action(state.copy(), ActionKind(event.kind))

    if isinstance(event, SetAnimation):
        ns = state.copy()
        ns.animation = AnimationKey(event.key)
        return ns

    if isinstance(event, Revive):
        return PetState(
            status=LifecycleStatus.IDLE,
            needs=Needs.baseline(REVIVE_BASELINE),
            has_waste=False,
            last_tick=event.now,
            animation=AnimationKey.IDLE,
        )

    raise TypeError(f"Unsupported pet event: {event!r}")


class PetStateMachine:
    """Owns one pet save slot: reduces inputs, persists, and publishes events."""

    def __init__(
        self,
        store: Any,
        slot_key: str,
        *,
        bus: Optional[EventBus] = None,
        rng: Optional[random.Random] = None,
        clock: Callable[[], float] = time.time,
        logger_: Optional[logging.Logger] = None,
    ) -> None:
        self._store = store
        self.slot_key = slot_key
        self._bus = bus or EventBus()
        self._rng = rng or random.Random()
        self._clock = clock
        self._logger = logger_ or logger
        self._death_listeners: List[Callable[[PetState], None]] = []
        self._state = self._load()

    def _load(self) -> PetState:
        """Load the last saved state for this slot, or start from defaults."""
        now = self._clock()
        raw = self._store.get(self.slot_key)
        if raw is None:
            self._logger.info("🐣 No saved pet for %s; starting fresh", self.slot_key)
            return PetState(last_tick=now)
        try:
            return PetState.from_dict(raw, now=now)
        except Exception as exc:
            self._logger.warning(
                "Failed to load pet save %s, starting fresh: %s", self.slot_key, exc
            )
            return PetState(last_tick=now)

    def _persist(self) -> None:
        try:
            ok = self._store.set(self.slot_key, self._state.to_dict())
        except Exception as exc:
            ok = False
            self._logger.debug("Pet save raised for %s: %s", self.slot_key, exc)
        if not ok:
            self._logger.warning(
                "Pet save for %s not persisted; continuing in memory", self.slot_key
            )

    @property
    def state(self) -> PetState:
        return self._state.copy()

    def add_death_listener(self, listener: Callable[[PetState], None]) -> None:
        self._death_listeners.append(listener)

    def dispatch(self, event: PetEvent) -> PetState:
        prev = self._state
        nxt = reduce(prev, event, self._rng)
        if nxt is prev or nxt == prev:
            return self.state
        self._state = nxt
        self._persist()
        self._publish(prev, nxt, event)
        return self.state

    def tick(self, now: Optional[float] = None) -> PetState:
        return self.dispatch(Tick(self._clock() if now is None else now))

    def apply_action(self, kind: Union[ActionKind, str]) -> PetState:
        try:
            action = ActionKind(kind)
        except ValueError:
            self._logger.warning("Ignoring unknown pet action %r", kind)
            return self.state
        return self.dispatch(Action(action))

    def set_animation(self, key: Union[AnimationKey, str]) -> PetState:
        return self.dispatch(SetAnimation(AnimationKey(key)))

    def revive(self, now: Optional[float] = None) -> PetState:
        self._logger.info("✨ Reviving pet in slot %s", self.slot_key)
        return self.dispatch(Revive(self._clock() if now is None else now))

    def _publish(self, prev: PetState, nxt: PetState, event: PetEvent) -> None:
        if isinstance(event, Action) and event.kind is ActionKind.FEED:
            self._bus.notify(EventKind.FED, {"hunger": nxt.needs.hunger})

        was_sick = prev.status is LifecycleStatus.SICK
        is_sick = nxt.status is LifecycleStatus.SICK
        if is_sick and not was_sick:
            self._bus.notify(EventKind.CATASTROPHE_ON, {"health": nxt.needs.health})
        elif was_sick and not is_sick and not nxt.is_dead:
            self._bus.notify(EventKind.CATASTROPHE_OFF, {"health": nxt.needs.health})

        if nxt.is_dead and not prev.is_dead:
            self._logger.info("💀 Pet in slot %s died", self.slot_key)
            self._bus.notify(EventKind.DEATH, {"slot": self.slot_key})
            for listener in list(self._death_listeners):
                try:
                    listener(nxt.copy())
                except Exception as exc:
                    self._logger.warning("Death listener failed: %s", exc)


class TickLoop:
    """Fixed-step timer that drives ``on_tick`` with real wall-clock timestamps.

    The step count only bounds how often ticks (and therefore saves) happen;
    elapsed simulation time always comes from the timestamp passed along.
    """

    def __init__(
        self,
        on_tick: Callable[[float], Any],
        *,
        tick_ms: int = DEFAULT_TICK_MS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._on_tick = on_tick
        self._step = max(1, int(tick_ms)) / 1000.0
        self._clock = clock
        self.fired = 0

    async def run(self, stop_event: asyncio.Event) -> None:
        loop = asyncio.get_running_loop()
        last = loop.time()
        accumulator = 0.0
        while not stop_event.is_set():
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self._step)
            except asyncio.TimeoutError:
                pass
            current = loop.time()
            accumulator += current - last
            last = current
            if accumulator < self._step:
                continue
            # Whole missed steps collapse into one tick.
            accumulator %= self._step
            self.fire()

    def fire(self) -> None:
        self.fired += 1
        try:
            self._on_tick(self._clock())
        except Exception as exc:
            logger.error("Tick handler failed: %s", exc, exc_info=True)
