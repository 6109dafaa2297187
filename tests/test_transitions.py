"""Tests for the Transition State Machine and its state store."""

import threading
from datetime import timedelta

import pytest

from conftest import T0
from geofence_kernel.models.region import GeoPoint, Region
from geofence_kernel.models.transition import (
    OccupancyState,
    RawEvent,
    RawEventType,
    RegionTransitionState,
    TransitionType,
)
from geofence_kernel.registry.store import RegionRegistry
from geofence_kernel.transitions.machine import (
    StepAction,
    TransitionStateMachine,
    classify,
)
from geofence_kernel.transitions.store import KeyedLockArena, TransitionStateStore


def _make_region(region_id: str = "r1", enabled: bool = True) -> Region:
    return Region(
        id=region_id,
        name="Office",
        center=GeoPoint(latitude=60.0, longitude=24.0),
        radius_meters=150,
        enabled=enabled,
    )


def _event(event_type: RawEventType, region_id: str = "r1", at=None) -> RawEvent:
    return RawEvent(region_id=region_id, event_type=event_type, occurred_at=at)


PENDING = RegionTransitionState(region_id="r1", dwell_confirmed=False, last_enter_at=T0)
CONFIRMED = RegionTransitionState(region_id="r1", dwell_confirmed=True, last_enter_at=T0)


class TestClassify:
    def test_enter_from_outside_creates_pending(self):
        step = classify(None, _event(RawEventType.ENTER), T0)
        assert step.action == StepAction.CREATE
        assert step.next_state.dwell_confirmed is False
        assert step.next_state.last_enter_at == T0
        assert step.emits is None

    def test_enter_while_pending_refreshes_timestamp(self):
        later = T0 + timedelta(seconds=10)
        step = classify(PENDING, _event(RawEventType.ENTER), later)
        assert step.action == StepAction.TOUCH
        assert step.next_state.last_enter_at == later
        assert step.next_state.dwell_confirmed is False
        assert step.emits is None

    def test_enter_while_confirmed_overwrites_record(self):
        step = classify(CONFIRMED, _event(RawEventType.ENTER), T0)
        assert step.action == StepAction.RESET
        assert step.next_state.dwell_confirmed is False
        assert step.emits is None

    def test_dwell_while_pending_emits_entry(self):
        step = classify(PENDING, _event(RawEventType.DWELL), T0)
        assert step.action == StepAction.CONFIRM
        assert step.next_state.dwell_confirmed is True
        assert step.emits == TransitionType.ENTRY

    def test_dwell_while_confirmed_is_idempotent(self):
        step = classify(CONFIRMED, _event(RawEventType.DWELL), T0)
        assert step.action == StepAction.NOOP
        assert step.emits is None

    def test_dwell_while_outside_is_ignored(self):
        step = classify(None, _event(RawEventType.DWELL), T0)
        assert step.action == StepAction.NOOP
        assert step.emits is None

    def test_exit_while_pending_is_silent_drive_by(self):
        step = classify(PENDING, _event(RawEventType.EXIT), T0)
        assert step.action == StepAction.DELETE
        assert step.emits is None

    def test_exit_while_confirmed_emits_exit(self):
        step = classify(CONFIRMED, _event(RawEventType.EXIT), T0)
        assert step.action == StepAction.DELETE
        assert step.emits == TransitionType.EXIT

    def test_exit_while_outside_is_ignored(self):
        step = classify(None, _event(RawEventType.EXIT), T0)
        assert step.action == StepAction.NOOP
        assert step.emits is None


class TestTransitionStateMachine:
    def setup_method(self):
        self.registry = RegionRegistry(db_path=":memory:")
        self.registry.add(_make_region())
        self.store = TransitionStateStore(db_path=":memory:")
        self.machine = TransitionStateMachine(
            registry=self.registry,
            store=self.store,
            clock=lambda: T0,
        )

    def _feed(self, *event_types):
        return [self.machine.handle(_event(t)) for t in event_types]

    def test_drive_by_emits_nothing(self):
        results = self._feed(RawEventType.ENTER, RawEventType.EXIT)
        assert results == [None, None]
        assert self.machine.occupancy("r1") == OccupancyState.OUTSIDE
        assert self.store.get("r1") is None

    def test_full_visit_emits_entry_then_exit(self):
        enter, dwell, leave = self._feed(
            RawEventType.ENTER, RawEventType.DWELL, RawEventType.EXIT
        )
        assert enter is None
        assert dwell.transition_type == TransitionType.ENTRY
        assert leave.transition_type == TransitionType.EXIT
        assert self.machine.occupancy("r1") == OccupancyState.OUTSIDE

    def test_redelivered_dwell_emits_once(self):
        results = self._feed(RawEventType.ENTER, RawEventType.DWELL, RawEventType.DWELL)
        emitted = [r for r in results if r is not None]
        assert len(emitted) == 1
        assert self.machine.occupancy("r1") == OccupancyState.INSIDE_CONFIRMED

    def test_occupancy_progression(self):
        self._feed(RawEventType.ENTER)
        assert self.machine.occupancy("r1") == OccupancyState.INSIDE_PENDING
        self._feed(RawEventType.DWELL)
        assert self.machine.occupancy("r1") == OccupancyState.INSIDE_CONFIRMED

    def test_unknown_region_is_noop(self):
        result = self.machine.handle(_event(RawEventType.ENTER, region_id="ghost"))
        assert result is None
        assert self.store.get("ghost") is None

    def test_disabled_region_leaves_state_untouched(self):
        self._feed(RawEventType.ENTER, RawEventType.DWELL)
        self.registry.set_enabled("r1", False)

        result = self.machine.handle(_event(RawEventType.EXIT))

        assert result is None
        assert self.machine.occupancy("r1") == OccupancyState.INSIDE_CONFIRMED

    def test_occurred_at_is_recorded(self):
        at = T0 + timedelta(minutes=3)
        self.machine.handle(_event(RawEventType.ENTER, at=at))
        assert self.store.get("r1").last_enter_at == at

    def test_emitted_transition_carries_event_time(self):
        at = T0 + timedelta(seconds=30)
        self._feed(RawEventType.ENTER)
        transition = self.machine.handle(_event(RawEventType.DWELL, at=at))
        assert transition.occurred_at == at

    def test_missing_timestamp_uses_clock(self):
        self._feed(RawEventType.ENTER)
        assert self.store.get("r1").last_enter_at == T0

    def test_storage_failure_drops_event(self):
        class BrokenStore(TransitionStateStore):
            def put(self, state):
                raise RuntimeError("disk full")

        machine = TransitionStateMachine(self.registry, BrokenStore(db_path=":memory:"))
        assert machine.handle(_event(RawEventType.ENTER)) is None

    def test_registry_failure_drops_event(self):
        class BrokenRegistry(RegionRegistry):
            def get(self, region_id):
                raise RuntimeError("registry offline")

        machine = TransitionStateMachine(BrokenRegistry(db_path=":memory:"), self.store)
        assert machine.handle(_event(RawEventType.ENTER)) is None

    def test_forget_drops_record(self):
        self._feed(RawEventType.ENTER, RawEventType.DWELL)
        self.machine.forget("r1")
        assert self.machine.occupancy("r1") == OccupancyState.OUTSIDE

    def test_state_survives_restart(self, tmp_path):
        db = str(tmp_path / "kernel.db")
        registry = RegionRegistry(db_path=db)
        registry.add(_make_region())

        before = TransitionStateMachine(registry, TransitionStateStore(db_path=db))
        before.handle(_event(RawEventType.ENTER))
        before.handle(_event(RawEventType.DWELL))

        after = TransitionStateMachine(registry, TransitionStateStore(db_path=db))
        result = after.handle(_event(RawEventType.EXIT))

        assert result is not None
        assert result.transition_type == TransitionType.EXIT

    def test_concurrent_dwell_deliveries_emit_one_entry(self):
        self._feed(RawEventType.ENTER)
        barrier = threading.Barrier(16)
        results = []
        lock = threading.Lock()

        def deliver():
            barrier.wait()
            result = self.machine.handle(_event(RawEventType.DWELL))
            with lock:
                results.append(result)

        threads = [threading.Thread(target=deliver) for _ in range(16)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        emitted = [r for r in results if r is not None]
        assert len(emitted) == 1
        assert self.machine.occupancy("r1") == OccupancyState.INSIDE_CONFIRMED

    def test_concurrent_enters_leave_single_record(self):
        barrier = threading.Barrier(8)

        def deliver():
            barrier.wait()
            self.machine.handle(_event(RawEventType.ENTER))

        threads = [threading.Thread(target=deliver) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        states = self.store.list_states()
        assert len(states) == 1
        assert states[0].dwell_confirmed is False

    def test_exit_racing_dwell_is_applied_whole(self):
        # Either order is valid: DWELL then EXIT announces both, EXIT then
        # DWELL announces nothing. A lone ENTRY or EXIT would mean one step
        # saw the other half-applied.
        for _ in range(50):
            self.machine.forget("r1")
            self._feed(RawEventType.ENTER)
            barrier = threading.Barrier(2)
            results = []
            lock = threading.Lock()

            def deliver(event_type):
                barrier.wait()
                result = self.machine.handle(_event(event_type))
                with lock:
                    results.append(result)

            threads = [
                threading.Thread(target=deliver, args=(RawEventType.DWELL,)),
                threading.Thread(target=deliver, args=(RawEventType.EXIT,)),
            ]
            for t in threads:
                t.start()
            for t in threads:
                t.join()

            emitted = sorted(r.transition_type.value for r in results if r is not None)
            assert emitted in ([], ["ENTRY", "EXIT"])
            assert self.machine.occupancy("r1") == OccupancyState.OUTSIDE
            assert self.store.get("r1") is None


class TestKeyedLockArena:
    def test_locks_released_after_use(self):
        arena = KeyedLockArena()
        with arena.hold("a"):
            with arena.hold("b"):
                assert len(arena) == 2
        assert len(arena) == 0

    def test_different_keys_do_not_block(self):
        arena = KeyedLockArena()
        entered = threading.Event()

        def other():
            with arena.hold("b"):
                entered.set()

        with arena.hold("a"):
            t = threading.Thread(target=other)
            t.start()
            assert entered.wait(timeout=2)
            t.join()

    def test_same_key_is_exclusive(self):
        arena = KeyedLockArena()
        acquired = threading.Event()

        def contender():
            with arena.hold("a"):
                acquired.set()

        with arena.hold("a"):
            t = threading.Thread(target=contender)
            t.start()
            assert not acquired.wait(timeout=0.2)
        t.join(timeout=2)
        assert acquired.is_set()


class TestTransitionStateStore:
    def test_put_get_delete(self):
        store = TransitionStateStore(db_path=":memory:")
        store.put(CONFIRMED)

        fetched = store.get("r1")
        assert fetched.dwell_confirmed is True
        assert fetched.last_enter_at == T0

        assert store.delete("r1") is True
        assert store.get("r1") is None
        assert store.delete("r1") is False

    def test_clear(self):
        store = TransitionStateStore(db_path=":memory:")
        store.put(PENDING)
        store.put(RegionTransitionState(region_id="r2"))
        store.clear()
        assert store.list_states() == []
