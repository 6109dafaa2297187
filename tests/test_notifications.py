"""Tests for the notification throttle and dispatcher."""

from datetime import timedelta

from conftest import T0, FakeClock
from geofence_kernel.config import EngineConfig
from geofence_kernel.history.ledger import HistoryLedger
from geofence_kernel.models.region import GeoPoint, Region
from geofence_kernel.models.transition import ConfirmedTransition, TransitionType
from geofence_kernel.monitoring.capabilities import StaticCapabilityChecker
from geofence_kernel.notifications.channel import RecordingPresentationChannel
from geofence_kernel.notifications.dispatcher import (
    NotificationDispatcher,
    compose_notification,
)
from geofence_kernel.notifications.throttle import NotificationThrottle
from geofence_kernel.registry.store import RegionRegistry


def _make_region(region_id: str = "r1", **overrides) -> Region:
    fields = dict(
        id=region_id,
        name="Bakery",
        center=GeoPoint(latitude=60.0, longitude=24.0),
        radius_meters=150,
    )
    fields.update(overrides)
    return Region(**fields)


def _transition(kind: TransitionType, region_id: str = "r1") -> ConfirmedTransition:
    return ConfirmedTransition(region_id=region_id, transition_type=kind, occurred_at=T0)


class TestNotificationThrottle:
    def setup_method(self):
        self.clock = FakeClock()
        self.throttle = NotificationThrottle(window_seconds=60, clock=self.clock)

    def test_first_dispatch_passes(self):
        assert self.throttle.try_acquire("r1", TransitionType.ENTRY) is True
        assert self.throttle.last_dispatch("r1", TransitionType.ENTRY) == T0

    def test_second_dispatch_within_window_blocked(self):
        self.throttle.try_acquire("r1", TransitionType.ENTRY)
        self.clock.advance(seconds=59)
        assert self.throttle.try_acquire("r1", TransitionType.ENTRY) is False
        # A blocked attempt does not move the window.
        assert self.throttle.last_dispatch("r1", TransitionType.ENTRY) == T0

    def test_window_expires(self):
        self.throttle.try_acquire("r1", TransitionType.ENTRY)
        self.clock.advance(seconds=60)
        assert self.throttle.try_acquire("r1", TransitionType.ENTRY) is True

    def test_keys_are_independent(self):
        assert self.throttle.try_acquire("r1", TransitionType.ENTRY) is True
        assert self.throttle.try_acquire("r1", TransitionType.EXIT) is True
        assert self.throttle.try_acquire("r2", TransitionType.ENTRY) is True
        assert len(self.throttle) == 3

    def test_reset(self):
        self.throttle.try_acquire("r1", TransitionType.ENTRY)
        self.throttle.reset()
        assert self.throttle.try_acquire("r1", TransitionType.ENTRY) is True


class TestComposeNotification:
    def test_default_templates(self):
        region = _make_region()
        assert compose_notification(region, TransitionType.ENTRY) == (
            "Arrived at Bakery",
            "You arrived at Bakery",
        )
        assert compose_notification(region, TransitionType.EXIT) == (
            "Left Bakery",
            "You left Bakery",
        )

    def test_override_messages(self):
        region = _make_region(entry_message="Buy bread", exit_message="Did you buy bread?")
        assert compose_notification(region, TransitionType.ENTRY) == ("Arrived at Bakery", "Buy bread")
        assert compose_notification(region, TransitionType.EXIT) == ("Left Bakery", "Did you buy bread?")

    def test_blank_override_falls_back(self):
        region = _make_region(entry_message="   ")
        assert compose_notification(region, TransitionType.ENTRY)[1] == "You arrived at Bakery"


class TestNotificationDispatcher:
    def setup_method(self):
        self.clock = FakeClock()
        self.registry = RegionRegistry(db_path=":memory:")
        self.registry.add(_make_region())
        self.ledger = HistoryLedger(db_path=":memory:", clock=self.clock)
        self.channel = RecordingPresentationChannel()
        self.capabilities = StaticCapabilityChecker()
        self.throttle = NotificationThrottle(window_seconds=60, clock=self.clock)
        self.dispatcher = self._make_dispatcher()

    def _make_dispatcher(self, ledger=None, channel=None) -> NotificationDispatcher:
        return NotificationDispatcher(
            registry=self.registry,
            ledger=ledger or self.ledger,
            channel=channel or self.channel,
            capabilities=self.capabilities,
            throttle=self.throttle,
            config=EngineConfig(),
            clock=self.clock,
        )

    def test_dispatch_presents_and_records(self):
        record = self.dispatcher.dispatch(_transition(TransitionType.ENTRY))

        assert record is not None
        assert record.title == "Arrived at Bakery"
        assert record.region_name == "Bakery"
        assert record.dispatched_at == T0

        (presented,) = self.channel.presented
        assert presented.message == "You arrived at Bakery"
        assert presented.deep_link == "geocue://notifications/r1"

        assert [r.id for r in self.ledger.query_recent()] == [record.id]

    def test_duplicate_within_window_is_throttled(self):
        self.dispatcher.dispatch(_transition(TransitionType.ENTRY))
        self.clock.advance(seconds=20)
        second = self.dispatcher.dispatch(_transition(TransitionType.ENTRY))

        assert second is None
        assert len(self.channel.presented) == 1
        assert self.ledger.count() == 1

    def test_after_window_dispatches_again(self):
        self.dispatcher.dispatch(_transition(TransitionType.ENTRY))
        self.clock.advance(seconds=61)
        assert self.dispatcher.dispatch(_transition(TransitionType.ENTRY)) is not None
        assert len(self.channel.presented) == 2

    def test_entry_and_exit_throttled_separately(self):
        self.dispatcher.dispatch(_transition(TransitionType.ENTRY))
        assert self.dispatcher.dispatch(_transition(TransitionType.EXIT)) is not None

    def test_no_notification_access(self):
        self.capabilities.notifications = False
        assert self.dispatcher.dispatch(_transition(TransitionType.ENTRY)) is None
        assert self.channel.presented == []
        assert len(self.throttle) == 0

    def test_preference_off_does_not_consume_throttle(self):
        self.registry.update(_make_region(notify_on_entry=False))

        assert self.dispatcher.dispatch(_transition(TransitionType.ENTRY)) is None
        assert self.throttle.last_dispatch("r1", TransitionType.ENTRY) is None
        assert self.dispatcher.dispatch(_transition(TransitionType.EXIT)) is not None

    def test_disabled_region_never_dispatches(self):
        self.registry.set_enabled("r1", False)
        assert self.dispatcher.dispatch(_transition(TransitionType.ENTRY)) is None
        assert self.ledger.count() == 0

    def test_deleted_region_is_dropped(self):
        self.registry.delete("r1")
        assert self.dispatcher.dispatch(_transition(TransitionType.EXIT)) is None

    def test_presentation_failure_keeps_throttle_closed(self):
        class BrokenChannel:
            def present(self, title, message, deep_link):
                raise RuntimeError("notification service down")

        dispatcher = self._make_dispatcher(channel=BrokenChannel())
        assert dispatcher.dispatch(_transition(TransitionType.ENTRY)) is None
        assert self.ledger.count() == 0

        # Throttle was stamped before the failure and is not rolled back.
        assert self.dispatcher.dispatch(_transition(TransitionType.ENTRY)) is None
        assert self.channel.presented == []

    def test_history_failure_is_swallowed(self):
        class BrokenLedger(HistoryLedger):
            def append(self, record):
                raise RuntimeError("database locked")

        dispatcher = self._make_dispatcher(ledger=BrokenLedger(db_path=":memory:"))
        record = dispatcher.dispatch(_transition(TransitionType.ENTRY))

        assert record is not None
        assert len(self.channel.presented) == 1
        assert self.throttle.last_dispatch("r1", TransitionType.ENTRY) == T0

    def test_history_snapshot_survives_rename(self):
        record = self.dispatcher.dispatch(_transition(TransitionType.ENTRY))
        self.registry.update(_make_region(name="Cafe"))

        stored = self.ledger.get_by_id(record.id)
        assert stored.region_name == "Bakery"

    def test_dispatch_time_comes_from_clock(self):
        self.clock.advance(minutes=5)
        record = self.dispatcher.dispatch(_transition(TransitionType.EXIT))
        assert record.dispatched_at == T0 + timedelta(minutes=5)
