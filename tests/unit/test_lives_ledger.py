"""
Unit tests for the lives ledger reconciliation protocol and the gate decision.
"""

import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[2] / "wooligotchi-core"))

from wooligotchi.events import EventBus, EventKind
from wooligotchi.gate import Gate, GatePhase, decide_phase
from wooligotchi.lives_ledger import LivesLedger, LivesRecord, PendingLifeMarker
from wooligotchi.local_store import MemoryStore

NET = 10143
OWNER_A = "0xAAaa000000000000000000000000000000000001"
OWNER_B = "0xbbbb000000000000000000000000000000000002"
TTL = 15 * 60


class Clock:
    def __init__(self, now: float = 1_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def ledger(store, bus, clock):
    return LivesLedger(store, bus=bus, clock=clock)


# ==============================================================================
# Records
# ==============================================================================


class TestLivesRecord:
    def test_count_never_negative(self):
        assert LivesRecord(confirmed=1, optimistic=0, spent=3).count == 0
        assert LivesRecord(confirmed=2, optimistic=1, spent=1).count == 2

    @pytest.mark.parametrize(
        "value,expected",
        [
            (3, LivesRecord(confirmed=3)),
            (-2, LivesRecord()),
            (True, LivesRecord()),
            ("junk", LivesRecord()),
            ({"confirmed": "2", "optimistic": None, "spent": -1}, LivesRecord(confirmed=2)),
        ],
    )
    def test_from_value(self, value, expected):
        assert LivesRecord.from_value(value) == expected

    def test_marker_expiry(self):
        marker = PendingLifeMarker(network_id=NET, submitted_at=100.0)
        assert not marker.is_expired(100.0 + TTL, TTL)
        assert marker.is_expired(100.0 + TTL + 1, TTL)
        assert PendingLifeMarker.from_value(marker.to_dict()) == marker
        assert PendingLifeMarker.from_value({"networkId": 1}) is None


# ==============================================================================
# Reconciliation protocol
# ==============================================================================


class TestLivesLedger:
    def test_transfer_submitted_grants_life_and_marker(self, ledger):
        assert ledger.transfer_submitted(NET, OWNER_A, tx_id="0x01") == 1
        assert ledger.get_lives(NET, OWNER_A) == 1
        assert ledger.has_unexpired_marker(OWNER_A)
        assert ledger.is_controlled(OWNER_A.lower())

    def test_submission_survives_reload(self, store, bus, clock, ledger):
        ledger.transfer_submitted(NET, OWNER_A)
        reloaded = LivesLedger(store, bus=bus, clock=clock)
        assert reloaded.get_lives(NET, OWNER_A) >= 1
        assert reloaded.has_unexpired_marker(OWNER_A)

    def test_confirmation_moves_optimistic_to_confirmed(self, ledger):
        ledger.transfer_submitted(NET, OWNER_A)
        assert ledger.transfer_confirmed(NET, OWNER_A) == 1
        record = ledger.record(NET, OWNER_A)
        assert (record.confirmed, record.optimistic) == (1, 0)
        assert ledger.pending_marker(OWNER_A) is None

    def test_confirmation_for_uncontrolled_owner_ignored(self, ledger):
        assert ledger.transfer_confirmed(NET, OWNER_B) == 0
        assert ledger.remote_lives_observed(NET, OWNER_B, 4) == 0
        assert ledger.record(NET, OWNER_B) == LivesRecord()

    def test_remote_count_absorbs_optimistic_grant(self, ledger):
        ledger.transfer_submitted(NET, OWNER_A)
        assert ledger.remote_lives_observed(NET, OWNER_A, 1) == 1
        record = ledger.record(NET, OWNER_A)
        assert (record.confirmed, record.optimistic) == (1, 0)
        assert ledger.pending_marker(OWNER_A) is None
        # The late receipt must not double count.
        assert ledger.transfer_confirmed(NET, OWNER_A) == 1

    def test_stale_remote_count_never_decreases(self, ledger):
        ledger.transfer_submitted(NET, OWNER_A)
        ledger.transfer_submitted(NET, OWNER_A)
        assert ledger.remote_lives_observed(NET, OWNER_A, 0) == 2
        assert ledger.remote_lives_observed(NET, OWNER_A, 1) == 2

    def test_remote_count_above_local_wins(self, ledger):
        ledger.register_owner(OWNER_A)
        assert ledger.remote_lives_observed(NET, OWNER_A, 3) == 3

    def test_malformed_remote_count_ignored(self, ledger):
        ledger.register_owner(OWNER_A)
        assert ledger.remote_lives_observed(NET, OWNER_A, "many") == 0

    def test_consume_life(self, ledger, bus):
        spent = []
        bus.subscribe(EventKind.LIFE_SPENT, lambda kind, data: spent.append(data))
        ledger.register_owner(OWNER_A)
        ledger.remote_lives_observed(NET, OWNER_A, 2)

        assert ledger.consume_life(NET, OWNER_A) == 1
        assert ledger.consume_life(NET, OWNER_A) == 0
        assert ledger.consume_life(NET, OWNER_A) == 0
        assert ledger.record(NET, OWNER_A).spent == 2
        assert spent[-1] == {"owner": OWNER_A.lower(), "lives": 0}

    def test_spent_life_not_resurrected_by_remote_poll(self, ledger):
        ledger.register_owner(OWNER_A)
        ledger.remote_lives_observed(NET, OWNER_A, 1)
        ledger.consume_life(NET, OWNER_A)
        assert ledger.remote_lives_observed(NET, OWNER_A, 1) == 0

    def test_death_releases_gate_but_keeps_marker_for_expiry(self, ledger, clock):
        ledger.transfer_submitted(NET, OWNER_A)
        ledger.consume_life(NET, OWNER_A)

        assert ledger.get_lives(NET, OWNER_A) == 0
        assert not ledger.has_unexpired_marker(OWNER_A)
        assert ledger.pending_marker(OWNER_A).holds_gate is False

        clock.now += TTL + 1
        assert ledger.expire_pending(NET, OWNER_A) is True
        assert ledger.record(NET, OWNER_A).optimistic == 0

    def test_stale_remote_read_then_failure_lapses(self, ledger, clock):
        ledger.transfer_submitted(NET, OWNER_A)
        assert ledger.remote_lives_observed(NET, OWNER_A, 0) == 1
        assert ledger.has_unexpired_marker(OWNER_A)
        ledger.transfer_failed(NET, OWNER_A)

        clock.now += TTL + 1
        gate = Gate(ledger)
        gate.set_owner(OWNER_A)
        assert gate.phase(NET) is GatePhase.NO_LIVES
        assert ledger.get_lives(NET, OWNER_A) == 0

    def test_one_of_two_transfers_failing_revokes_only_its_life(self, ledger, clock):
        ledger.transfer_submitted(NET, OWNER_A, tx_id="0x01")
        ledger.transfer_submitted(NET, OWNER_A, tx_id="0x02")
        assert ledger.transfer_confirmed(NET, OWNER_A) == 2
        assert ledger.pending_marker(OWNER_A) is not None
        ledger.transfer_failed(NET, OWNER_A)

        clock.now += TTL + 1
        assert ledger.expire_pending(NET, OWNER_A) is True
        assert ledger.get_lives(NET, OWNER_A) == 1
        assert ledger.pending_marker(OWNER_A) is None

    def test_partial_remote_read_keeps_marker(self, ledger):
        ledger.transfer_submitted(NET, OWNER_A)
        ledger.transfer_submitted(NET, OWNER_A)
        ledger.remote_lives_observed(NET, OWNER_A, 1)
        assert ledger.pending_marker(OWNER_A) is not None
        ledger.remote_lives_observed(NET, OWNER_A, 2)
        assert ledger.pending_marker(OWNER_A) is None

    def test_late_receipt_after_expiry_restores_life(self, ledger, clock):
        ledger.transfer_submitted(NET, OWNER_A)
        clock.now += TTL + 1
        ledger.expire_pending(NET, OWNER_A)
        assert ledger.get_lives(NET, OWNER_A) == 0

        assert ledger.transfer_confirmed(NET, OWNER_A) == 1
        record = ledger.record(NET, OWNER_A)
        assert (record.confirmed, record.revoked) == (1, 0)
        # A second receipt has nothing left to confirm.
        assert ledger.transfer_confirmed(NET, OWNER_A) == 1

    def test_remote_read_settles_revoked_grant(self, ledger, clock):
        ledger.transfer_submitted(NET, OWNER_A)
        clock.now += TTL + 1
        ledger.expire_pending(NET, OWNER_A)

        assert ledger.remote_lives_observed(NET, OWNER_A, 1) == 1
        assert ledger.record(NET, OWNER_A).revoked == 0
        assert ledger.transfer_confirmed(NET, OWNER_A) == 1

    def test_failed_transfer_keeps_marker_until_ttl(self, ledger, bus, clock):
        messages = []
        bus.subscribe(EventKind.STATUS_MESSAGE, lambda kind, data: messages.append(data))
        ledger.transfer_submitted(NET, OWNER_A)
        ledger.transfer_failed(NET, OWNER_A)

        assert ledger.has_unexpired_marker(OWNER_A)
        assert messages == [{"message": "Transaction failed.", "level": "error"}]

        clock.now += TTL + 1
        assert ledger.expire_pending(NET, OWNER_A) is True
        assert ledger.get_lives(NET, OWNER_A) == 0
        assert ledger.pending_marker(OWNER_A) is None

    def test_expire_pending_before_ttl_is_noop(self, ledger, clock):
        ledger.transfer_submitted(NET, OWNER_A)
        clock.now += TTL - 1
        assert ledger.expire_pending(NET, OWNER_A) is False
        assert ledger.get_lives(NET, OWNER_A) == 1

    def test_expiry_keeps_confirmed_lives(self, ledger, clock):
        ledger.register_owner(OWNER_A)
        ledger.remote_lives_observed(NET, OWNER_A, 2)
        ledger.transfer_submitted(NET, OWNER_A)
        clock.now += TTL + 1
        ledger.expire_pending(NET, OWNER_A)
        assert ledger.get_lives(NET, OWNER_A) == 2

    def test_records_are_namespaced_by_network_and_owner(self, ledger):
        ledger.transfer_submitted(NET, OWNER_A)
        assert ledger.get_lives(1, OWNER_A) == 0
        assert ledger.get_lives(NET, OWNER_B) == 0

    def test_request_transfer_emits_intent_only(self, ledger, bus):
        seen = []
        bus.subscribe(EventKind.TRANSFER_REQUESTED, lambda kind, data: seen.append(data))
        ledger.request_transfer(OWNER_A)
        assert seen == [{"owner": OWNER_A.lower()}]
        assert ledger.record(NET, OWNER_A) == LivesRecord()

    def test_lives_updated_event(self, ledger, bus):
        seen = []
        bus.subscribe(EventKind.LIVES_UPDATED, lambda kind, data: seen.append(data))
        ledger.transfer_submitted(NET, OWNER_A)
        assert seen == [{"owner": OWNER_A.lower(), "networkId": NET, "lives": 1}]

    def test_write_failure_keeps_session_value(self, store, ledger):
        store.fail_writes = True
        assert ledger.transfer_submitted(NET, OWNER_A) == 1
        assert ledger.get_lives(NET, OWNER_A) == 1


# ==============================================================================
# Gate decision
# ==============================================================================


class TestDecidePhase:
    @pytest.mark.parametrize(
        "connected,lives,pending,forced,expected",
        [
            (False, 5, True, True, GatePhase.NO_WALLET),
            (True, 0, False, False, GatePhase.NO_LIVES),
            (True, 0, True, False, GatePhase.PLAYABLE),
            (True, 1, False, False, GatePhase.PLAYABLE),
            (True, 0, False, True, GatePhase.PLAYABLE),
        ],
    )
    def test_table(self, connected, lives, pending, forced, expected):
        assert decide_phase(connected, lives, pending, forced) is expected


class TestGate:
    def test_no_owner_is_no_wallet(self, ledger):
        assert Gate(ledger).phase(NET) is GatePhase.NO_WALLET

    def test_no_lives_without_marker(self, ledger):
        gate = Gate(ledger)
        gate.set_owner(OWNER_A)
        assert gate.phase(NET) is GatePhase.NO_LIVES

    def test_pending_marker_makes_playable(self, ledger):
        gate = Gate(ledger)
        gate.set_owner(OWNER_A)
        ledger.transfer_submitted(NET, OWNER_A)
        assert gate.is_playable(NET)

    def test_expired_marker_falls_back_to_no_lives(self, ledger, clock):
        gate = Gate(ledger)
        gate.set_owner(OWNER_A)
        ledger.transfer_submitted(NET, OWNER_A)
        clock.now += TTL + 1
        assert gate.phase(NET) is GatePhase.NO_LIVES

    def test_force_refused_outside_test_mode(self, ledger):
        gate = Gate(ledger)
        gate.set_owner(OWNER_A)
        assert gate.force_playable() is False
        assert gate.phase(NET) is GatePhase.NO_LIVES

    def test_force_in_test_mode_resets_on_owner_switch(self, ledger):
        gate = Gate(ledger, test_mode=True)
        gate.set_owner(OWNER_A)
        assert gate.force_playable() is True
        assert gate.phase(NET) is GatePhase.PLAYABLE

        gate.set_owner(OWNER_B)
        gate.set_owner(OWNER_A)
        assert gate.phase(NET) is GatePhase.NO_LIVES

    def test_owner_switch_keeps_other_records(self, ledger):
        gate = Gate(ledger)
        ledger.transfer_submitted(NET, OWNER_A)
        ledger.transfer_confirmed(NET, OWNER_A)
        gate.set_owner(OWNER_A)
        gate.set_owner(OWNER_B)
        assert gate.phase(NET) is GatePhase.NO_LIVES
        gate.set_owner(OWNER_A)
        assert gate.phase(NET) is GatePhase.PLAYABLE

    def test_clear_force(self, ledger):
        gate = Gate(ledger, test_mode=True)
        gate.set_owner(OWNER_A)
        gate.force_playable()
        gate.clear_force()
        assert gate.phase(NET) is GatePhase.NO_LIVES
