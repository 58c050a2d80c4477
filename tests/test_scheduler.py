"""
Daily scheduler tests

- should_fire_now() and build_message() decisions
- DailyScheduler lifecycle: start, stop, restart, stale wake-ups
- at most one successful dispatch per calendar day, retry on failure
- PeriodicTask timing on a real thread
"""

import threading
import time
from datetime import date, datetime, timedelta, timezone

import pytest

from expiry_notifier.classifier import URGENT_WINDOW
from expiry_notifier.config import NotificationConfig, SchedulerConfig
from expiry_notifier.dispatcher import Dispatcher
from expiry_notifier.models import Product
from expiry_notifier.scheduler import (
    DailyScheduler,
    PeriodicTask,
    SchedulerState,
    build_message,
    should_fire_now,
)

UTC = timezone.utc
SIX_AM = datetime(2024, 3, 14, 6, 0, tzinfo=UTC)


@pytest.fixture
def channel(fake_channel):
    return fake_channel()


@pytest.fixture
def make_scheduler(classifier, state_store, channel, fake_task):
    """Factory: scheduler on a fixed clock with fake timer tasks."""
    def _make(now=SIX_AM, config=None, channels=None, clock=None):
        return DailyScheduler(
            classifier,
            Dispatcher(channels if channels is not None else [channel]),
            state_store,
            config=config or SchedulerConfig(),
            notification=NotificationConfig(),
            clock=clock or (lambda: now),
            task_factory=fake_task,
        )
    return _make


class TestShouldFireNow:
    def test_fires_at_trigger_minute(self):
        assert should_fire_now(SIX_AM, None, SchedulerConfig())

    def test_not_outside_trigger_minute(self):
        config = SchedulerConfig()
        assert not should_fire_now(SIX_AM.replace(hour=7), None, config)
        assert not should_fire_now(SIX_AM.replace(minute=1), None, config)

    def test_not_twice_the_same_day(self):
        assert not should_fire_now(SIX_AM, date(2024, 3, 14), SchedulerConfig())

    def test_fires_again_next_day(self):
        assert should_fire_now(SIX_AM, date(2024, 3, 13), SchedulerConfig())

    def test_custom_trigger_time(self):
        config = SchedulerConfig(trigger_hour=18, trigger_minute=30)
        assert should_fire_now(datetime(2024, 3, 14, 18, 30, 45), None, config)

    def test_skipped_weekday(self):
        config = SchedulerConfig(skip_weekdays=frozenset({4}))
        assert not should_fire_now(SIX_AM, None, config)
        assert should_fire_now(SIX_AM + timedelta(days=1), None, config)


class TestBuildMessage:
    def test_nothing_urgent(self, classifier, make_product, today):
        result = classifier.classify([make_product("Pizza", 5)], today, URGENT_WINDOW)
        assert build_message(result, today, NotificationConfig()) is None

    def test_expired_title(self, classifier, make_product, today):
        result = classifier.classify(
            [make_product("Glace", 2), make_product("Saumon", -1)], today, URGENT_WINDOW
        )
        message = build_message(result, today, NotificationConfig())

        assert message.title == "Expired products"
        assert message.body == "Saumon, Glace"

    def test_soon_title_and_tag(self, classifier, make_product, today):
        result = classifier.classify([make_product("Glace", 2)], today, URGENT_WINDOW)
        message = build_message(result, today, NotificationConfig(tag_prefix="dlc"))

        assert message.title == "Products expiring soon"
        assert message.tag == "dlc-2024-03-14"
        assert message.icon == "/icon-192x192.png"
        assert message.require_interaction is True
        assert message.vibrate == [200, 100, 200]

    def test_unnamed_product(self, classifier, today):
        product = Product(id="p", name="", expiry="2024-03-15T12:00:00Z")
        result = classifier.classify([product], today, URGENT_WINDOW)
        assert build_message(result, today, NotificationConfig()).body == "Unnamed product"


class TestLifecycle:
    def test_start_arms_without_firing(self, make_scheduler, make_product, channel, fake_task):
        scheduler = make_scheduler()
        scheduler.start([make_product("Glace", 1)])

        assert scheduler.state is SchedulerState.ARMED
        assert len(fake_task.instances) == 1
        assert fake_task.instances[0].started
        assert channel.sent == []

    def test_start_then_stop_never_sends(self, make_scheduler, make_product, channel, fake_task):
        scheduler = make_scheduler()
        scheduler.start([make_product("Saumon", -1)])
        scheduler.stop()

        task = fake_task.instances[0]
        assert task.cancelled
        task.fire()
        assert scheduler.on_wake(now=SIX_AM) is False
        assert scheduler.state is SchedulerState.STOPPED
        assert channel.sent == []

    def test_stop_is_idempotent(self, make_scheduler):
        scheduler = make_scheduler()
        scheduler.stop()
        scheduler.start([])
        scheduler.stop()
        scheduler.stop()
        assert scheduler.state is SchedulerState.STOPPED

    def test_restart_invalidates_previous_task(self, make_scheduler, make_product, channel, fake_task):
        scheduler = make_scheduler()
        scheduler.start([make_product("Glace", 1)])
        scheduler.start([make_product("Glace", 1)])

        old, new = fake_task.instances
        assert old.cancelled
        old.fire()
        assert channel.sent == []

        new.fire()
        assert len(channel.sent) == 1

    def test_wake_before_start_is_ignored(self, make_scheduler, channel):
        scheduler = make_scheduler()
        assert scheduler.on_wake(now=SIX_AM) is False
        assert scheduler.state is SchedulerState.IDLE
        assert channel.sent == []

    def test_first_wake_is_aligned_to_the_hour(self, make_scheduler, fake_task):
        scheduler = make_scheduler(now=datetime(2024, 3, 14, 5, 30, tzinfo=UTC))
        scheduler.start([])

        task = fake_task.instances[0]
        assert task.interval == 3600
        assert task.first_delay == pytest.approx(1800)

    def test_first_wake_on_the_hour_waits_a_full_period(self, make_scheduler, fake_task):
        scheduler = make_scheduler()
        scheduler.start([])
        assert fake_task.instances[0].first_delay == pytest.approx(3600)

    def test_realigns_after_clock_jump(self, make_scheduler, make_product, channel, fake_task):
        now = [datetime(2024, 3, 14, 5, 0, tzinfo=UTC)]
        scheduler = make_scheduler(clock=lambda: now[0])
        scheduler.start([make_product("Glace", 1)])
        task = fake_task.instances[0]

        # Host suspended for 20 minutes: the wake-up due at 06:00 runs at 06:20
        now[0] = datetime(2024, 3, 14, 6, 20, tzinfo=UTC)
        task.fire()
        assert task.next_delay() == pytest.approx(40 * 60)

        # Next wake-ups land on the hour again
        now[0] = datetime(2024, 3, 15, 6, 0, tzinfo=UTC)
        task.fire()
        assert task.next_delay() == pytest.approx(3600)
        assert [m.tag for m in channel.sent] == ["expiry-2024-03-15"]

    def test_update_products_replaces_snapshot(self, make_scheduler, make_product, channel):
        scheduler = make_scheduler()
        scheduler.start([make_product("Pizza", 5)])
        scheduler.update_products([make_product("Glace", 1)])

        assert [p.name for p in scheduler.products] == ["Glace"]
        assert scheduler.on_wake(now=SIX_AM) is True
        assert channel.sent[0].body == "Glace"


class TestDailyDeduplication:
    def test_many_wakes_one_send(self, make_scheduler, make_product, channel, state_store):
        scheduler = make_scheduler()
        scheduler.start([make_product("Glace", 1)])

        outcomes = [scheduler.on_wake(now=SIX_AM + timedelta(seconds=s)) for s in range(0, 60, 5)]

        assert outcomes.count(True) == 1
        assert len(channel.sent) == 1
        assert state_store.get_last_fired_day() == date(2024, 3, 14)
        assert scheduler.state is SchedulerState.WAITING

    def test_no_send_outside_trigger_time(self, make_scheduler, make_product, channel, state_store):
        scheduler = make_scheduler()
        scheduler.start([make_product("Glace", 1)])

        for hour in range(24):
            if hour != 6:
                scheduler.on_wake(now=SIX_AM.replace(hour=hour))

        assert channel.sent == []
        assert state_store.get_last_fired_day() is None

    def test_next_day_fires_again(self, make_scheduler, make_product, channel):
        scheduler = make_scheduler()
        scheduler.start([make_product("Glace", 1)])

        assert scheduler.on_wake(now=SIX_AM)
        assert scheduler.on_wake(now=SIX_AM + timedelta(days=1))
        assert [m.tag for m in channel.sent] == ["expiry-2024-03-14", "expiry-2024-03-15"]

    def test_state_survives_restart(self, make_scheduler, make_product, channel):
        first = make_scheduler()
        first.start([make_product("Glace", 1)])
        assert first.on_wake(now=SIX_AM)
        first.stop()

        second = make_scheduler()
        second.start([make_product("Glace", 1)])
        assert second.on_wake(now=SIX_AM) is False
        assert len(channel.sent) == 1

    def test_nothing_urgent_leaves_state_unset(self, make_scheduler, make_product, channel, state_store):
        scheduler = make_scheduler()
        scheduler.start([make_product("Pizza", 5)])

        assert scheduler.on_wake(now=SIX_AM) is False
        assert channel.sent == []
        assert state_store.get_last_fired_day() is None

    def test_skipped_weekday(self, make_scheduler, make_product, channel, state_store):
        scheduler = make_scheduler(config=SchedulerConfig(skip_weekdays=frozenset({4})))
        scheduler.start([make_product("Glace", 1)])

        assert scheduler.on_wake(now=SIX_AM) is False
        assert channel.sent == []
        assert state_store.get_last_fired_day() is None


class TestRetry:
    def test_failed_send_is_retried(self, make_scheduler, make_product, fake_channel, state_store):
        flaky = fake_channel(results=[False, RuntimeError("boom"), True])
        scheduler = make_scheduler(channels=[flaky])
        scheduler.start([make_product("Glace", 1)])

        assert scheduler.on_wake(now=SIX_AM) is False
        assert state_store.get_last_fired_day() is None
        assert scheduler.on_wake(now=SIX_AM + timedelta(seconds=20)) is False
        assert state_store.get_last_fired_day() is None
        assert scheduler.on_wake(now=SIX_AM + timedelta(seconds=40)) is True

        assert len(flaky.sent) == 3
        assert state_store.get_last_fired_day() == date(2024, 3, 14)

    def test_no_channel_available(self, make_scheduler, make_product, fake_channel, state_store):
        offline = fake_channel(available=False)
        scheduler = make_scheduler(channels=[offline])
        scheduler.start([make_product("Glace", 1)])

        assert scheduler.on_wake(now=SIX_AM) is False
        assert offline.sent == []
        assert state_store.get_last_fired_day() is None
        assert scheduler.state is SchedulerState.WAITING

    def test_classifier_error_is_contained(self, make_scheduler, make_product, classifier, monkeypatch):
        scheduler = make_scheduler()
        scheduler.start([make_product("Glace", 1)])

        def broken(*args, **kwargs):
            raise RuntimeError("corrupt snapshot")

        monkeypatch.setattr(classifier, "classify", broken)
        assert scheduler.on_wake(now=SIX_AM) is False
        assert scheduler.state is SchedulerState.WAITING


class TestConcurrency:
    def test_stop_waits_for_inflight_dispatch(self, make_scheduler, make_product, fake_channel):
        entered = threading.Event()
        release = threading.Event()

        class BlockingChannel(fake_channel):
            def send(self, message):
                entered.set()
                release.wait(5)
                return super().send(message)

        channel = BlockingChannel()
        scheduler = make_scheduler(channels=[channel])
        scheduler.start([make_product("Glace", 1)])

        waker = threading.Thread(target=scheduler.on_wake, kwargs={"now": SIX_AM})
        waker.start()
        assert entered.wait(5)

        # Snapshot updates do not wait for the dispatch
        scheduler.update_products([make_product("Lait", 2)])

        stopper = threading.Thread(target=scheduler.stop)
        stopper.start()
        stopper.join(0.1)
        assert stopper.is_alive()

        release.set()
        waker.join(5)
        stopper.join(5)
        assert not stopper.is_alive()
        assert scheduler.state is SchedulerState.STOPPED
        assert len(channel.sent) == 1


class TestPeriodicTask:
    def test_calls_until_cancelled(self):
        calls = []
        done = threading.Event()

        def callback(task):
            calls.append(task)
            if len(calls) == 3:
                done.set()

        task = PeriodicTask(0.01, callback, first_delay=0).start()
        assert done.wait(5)
        task.cancel()
        task.join(5)

        count = len(calls)
        time.sleep(0.05)
        assert len(calls) == count
        assert all(c is task for c in calls)
        assert task.cancelled

    def test_callback_errors_do_not_stop_the_task(self):
        calls = []
        done = threading.Event()

        def callback(task):
            calls.append(1)
            if len(calls) == 2:
                done.set()
            raise RuntimeError("boom")

        task = PeriodicTask(0.01, callback, first_delay=0).start()
        try:
            assert done.wait(5)
        finally:
            task.cancel()
            task.join(5)

    def test_cancel_before_first_delay(self):
        calls = []
        task = PeriodicTask(10, calls.append, first_delay=10).start()
        task.cancel()
        task.join(5)
        assert calls == []

    def test_delay_callable_replaces_fixed_interval(self):
        calls = []
        done = threading.Event()

        def callback(task):
            calls.append(1)
            if len(calls) == 3:
                done.set()

        # The fixed interval alone would wait an hour between calls
        task = PeriodicTask(3600, callback, first_delay=0, next_delay=lambda: 0.01).start()
        try:
            assert done.wait(5)
        finally:
            task.cancel()
            task.join(5)

    def test_failing_delay_callable_falls_back_to_interval(self):
        calls = []
        first = threading.Event()

        def callback(task):
            calls.append(1)
            first.set()

        def broken():
            raise RuntimeError("clock unavailable")

        task = PeriodicTask(3600, callback, first_delay=0, next_delay=broken).start()
        try:
            assert first.wait(5)
            time.sleep(0.05)
            assert calls == [1]
        finally:
            task.cancel()
            task.join(5)
