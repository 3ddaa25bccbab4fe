"""
Game session: the surface a UI shell drives.

Wires the pet state machine, lives ledger, gate and reward ledger for the
active owner, and runs the fixed-step tick loop alongside the remote poll
loop.
"""

from __future__ import annotations

import asyncio
import logging
import random
import time
from typing import Any, Callable, Dict, List, Optional, Set, Union

from .constants import DEFAULT_POLL_INTERVAL_SECONDS, DEFAULT_TICK_MS
from .events import EventBus
from .gate import Gate, GatePhase
from .lives_ledger import LivesLedger
from .local_store import normalise_owner
from .needs_engine import PetState
from .pet_machine import ActionKind, PetStateMachine, TickLoop, pet_save_key
from .remote_api import LivesAuthorityClient
from .reward_ledger import CollectionOutcome, CollectionResult, RewardLedger
from .wallet import WalletError

logger = logging.getLogger(__name__)


class GameSession:
    """Core facade for one device: one active owner at a time."""

    def __init__(
        self,
        store: Any,
        *,
        reward_authority: Any,
        lives_authority: Optional[LivesAuthorityClient] = None,
        wallet: Optional[Any] = None,
        bus: Optional[EventBus] = None,
        test_mode: bool = False,
        tick_ms: int = DEFAULT_TICK_MS,
        poll_interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS,
        clock: Callable[[], float] = time.time,
        rng: Optional[random.Random] = None,
        logger_: Optional[logging.Logger] = None,
    ) -> None:
        self._store = store
        self.bus = bus or EventBus()
        self._wallet = wallet
        self._lives_authority = lives_authority
        self._clock = clock
        self._rng = rng or random.Random()
        self._logger = logger_ or logger
        self._tick_ms = tick_ms
        self._poll_interval = max(1.0, float(poll_interval_seconds))

        self.lives = LivesLedger(store, bus=self.bus, clock=clock, logger_=self._logger)
        self.gate = Gate(self.lives, test_mode=test_mode)
        self.rewards = RewardLedger(
            store,
            reward_authority,
            bus=self.bus,
            chain_clock=wallet.chain_time if wallet is not None else None,
            test_mode=test_mode,
            local_clock=clock,
            logger_=self._logger,
        )

        self.owner = ""
        self.network_id = 0
        self.pet: Optional[PetStateMachine] = None
        self.receipt_tasks: Set[asyncio.Task] = set()
        self._bootstrapped: Set[str] = set()

    # ------------------------------------------------------------------
    # Owner lifecycle
    # ------------------------------------------------------------------

    def connect(self, owner: str, network_id: int) -> None:
        """Make ``owner`` on ``network_id`` the active player."""
        addr = normalise_owner(owner)
        if not addr:
            self.disconnect()
            return
        self.owner = addr
        self.network_id = int(network_id)
        self.lives.register_owner(addr)
        self.gate.set_owner(addr)
        self.rewards.set_owner(addr, self.network_id, self._signer_for(addr))
        self.pet = PetStateMachine(
            self._store,
            pet_save_key(self.network_id, addr),
            bus=self.bus,
            rng=self._rng,
            clock=self._clock,
            logger_=self._logger,
        )
        self.pet.add_death_listener(self._on_death)
        self._logger.info(
            "👛 Connected %s on chain %s (lives=%d, phase=%s)",
            addr,
            self.network_id,
            self.lives.get_lives(self.network_id, addr),
            self.gate_phase().value,
        )

    def disconnect(self) -> None:
        if self.owner:
            self._logger.info("Disconnected %s", self.owner)
        self.owner = ""
        self.pet = None
        self.gate.set_owner(None)
        self.rewards.set_owner(None, self.network_id)

    def _signer_for(self, owner: str) -> Optional[Callable[[str], Any]]:
        if self._wallet is None:
            return None
        if normalise_owner(self._wallet.address) != owner:
            self._logger.warning("Wallet key does not match %s; signing disabled", owner)
            return None
        return self._wallet.sign_message

    def _on_death(self, state: PetState) -> None:
        self.gate.clear_force()
        self.lives.consume_life(self.network_id, self.owner)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def gate_phase(self, now: Optional[float] = None) -> GatePhase:
        return self.gate.phase(self.network_id, self._clock() if now is None else now)

    def snapshot(self) -> Dict[str, Any]:
        pet_state = self.pet.state.to_dict() if self.pet is not None else None
        return {
            "owner": self.owner,
            "networkId": self.network_id,
            "phase": self.gate_phase().value,
            "pet": pet_state,
            "lives": self.lives.get_lives(self.network_id, self.owner),
            "pendingLife": self.lives.has_unexpired_marker(self.owner, self._clock()),
            "wool": self.rewards.snapshot(),
        }

    # ------------------------------------------------------------------
    # Imperative entry points
    # ------------------------------------------------------------------

    def apply_action(self, kind: Union[ActionKind, str]) -> Optional[PetState]:
        if self.pet is None or self.gate_phase() is not GatePhase.PLAYABLE:
            self._logger.debug("Action %r ignored: pet not playable", kind)
            return None
        return self.pet.apply_action(kind)

    def set_stage(self, stage: Optional[str]) -> None:
        self.rewards.set_stage(stage)

    async def request_collection(self) -> CollectionResult:
        if self.pet is not None and self.pet.state.is_dead:
            self._logger.info("[WOOL] collect blocked: pet is dead")
            return CollectionResult(
                collected=False,
                outcome=CollectionOutcome.DISABLED,
                day_key=self.rewards.day_key,
            )
        return await self.rewards.request_collection()

    def request_revive(self) -> bool:
        """Revive a dead pet when the owner still has a life (or one pending)."""
        if self.pet is None or not self.pet.state.is_dead:
            return False
        if self.gate_phase() is not GatePhase.PLAYABLE:
            self._logger.info("Revive refused for %s: no lives left", self.owner)
            self.bus.status("No lives left. Deposit an NFT to continue.", level="info")
            return False
        self.pet.revive(self._clock())
        return True

    def request_transfer(self) -> None:
        self.lives.request_transfer(self.owner)

    def force_playable(self) -> bool:
        return self.gate.force_playable()

    async def submit_life_transfer(self, token_id: int) -> Optional[str]:
        """Send one NFT to the vault; grants an optimistic life on submission."""
        if not self.owner or self._wallet is None:
            self.bus.status("Connect a wallet first.", level="error")
            return None
        owner, network_id = self.owner, self.network_id
        try:
            tx_id = await self._wallet.submit_transfer(token_id)
        except WalletError as exc:
            self._logger.warning("Collateral transfer not submitted: %s", exc)
            self.bus.status("Transfer failed.", level="error")
            return None
        self.lives.transfer_submitted(network_id, owner, tx_id, self._clock())
        task = asyncio.create_task(self._await_receipt(network_id, owner, tx_id))
        self.receipt_tasks.add(task)
        task.add_done_callback(self.receipt_tasks.discard)
        return tx_id

    async def _await_receipt(self, network_id: int, owner: str, tx_id: str) -> None:
        try:
            ok = await self._wallet.wait_for_receipt(tx_id)
        except WalletError as exc:
            # The pending marker expires on its own if nothing else confirms it.
            self._logger.warning("Receipt for %s unavailable: %s", tx_id, exc)
            return
        if ok:
            self.lives.transfer_confirmed(network_id, owner)
        else:
            self.lives.transfer_failed(network_id, owner)

    # ------------------------------------------------------------------
    # Loops
    # ------------------------------------------------------------------

    def on_tick(self, now: float) -> None:
        if self.pet is None or self.gate_phase(now) is not GatePhase.PLAYABLE:
            return
        self.pet.tick(now)

    async def poll_remote(self) -> None:
        """One reconciliation pass against the remote authorities."""
        owner, network_id = self.owner, self.network_id
        if not owner:
            return
        if self._lives_authority is not None and self._lives_authority.is_enabled:
            count = await self._lives_authority.fetch_lives(network_id, owner)
            if count is not None:
                self.lives.remote_lives_observed(network_id, owner, count)
        self.lives.expire_pending(network_id, owner, self._clock())
        await self.rewards.refresh_day_key()
        if owner not in self._bootstrapped:
            if await self.rewards.bootstrap() is not None:
                self._bootstrapped.add(owner)

    async def _poll_loop(self, stop_event: asyncio.Event) -> None:
        while not stop_event.is_set():
            try:
                await self.poll_remote()
            except Exception as exc:
                self._logger.error(f"Error in remote poll loop: {exc}")
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self._poll_interval)
            except asyncio.TimeoutError:
                pass

    async def run(
        self, stop_event: Optional[asyncio.Event] = None, max_ticks: Optional[int] = None
    ) -> None:
        """Run the tick and poll loops until ``stop_event`` is set."""
        stop = stop_event or asyncio.Event()
        tick_loop = TickLoop(
            self._tick_with_limit(stop, max_ticks),
            tick_ms=self._tick_ms,
            clock=self._clock,
        )
        self._logger.info("🎮 Game session loops starting (tick=%sms)", self._tick_ms)
        tasks: List[asyncio.Task] = [
            asyncio.create_task(tick_loop.run(stop)),
            asyncio.create_task(self._poll_loop(stop)),
        ]
        try:
            await asyncio.gather(*tasks)
        finally:
            stop.set()
            for task in tasks:
                task.cancel()
            self._logger.info("Game session loops stopped")

    def _tick_with_limit(
        self, stop: asyncio.Event, max_ticks: Optional[int]
    ) -> Callable[[float], None]:
        fired = 0

        def _handler(now: float) -> None:
            nonlocal fired
            self.on_tick(now)
            fired += 1
            if max_ticks is not None and fired >= max_ticks:
                stop.set()

        return _handler
