"""Daily notification scheduling: once per calendar day at the trigger time."""

import logging
import threading
import time
from datetime import date, datetime
from enum import Enum
from typing import Callable, Iterable, List, Optional

from .classifier import URGENT_WINDOW, ExpiryClassifier
from .config import NotificationConfig, SchedulerConfig
from .dispatcher import Dispatcher
from .models import ClassificationResult, DispatchMessage, Product
from .state import NotificationStateStore

logger = logging.getLogger(__name__)

UNNAMED_PRODUCT = "Unnamed product"


def is_trigger_time(now: datetime, config: SchedulerConfig) -> bool:
    """True during the single trigger minute of the day."""
    return now.hour == config.trigger_hour and now.minute == config.trigger_minute


def should_fire_now(
    now: datetime,
    last_fired_day: Optional[date],
    config: SchedulerConfig
) -> bool:
    """
    Determine if the daily notification should be sent at this wake-up.

    Logic:
    - Outside the trigger minute, return False.
    - On a skipped weekday, return False.
    - If a notification already went out today, return False.
    - Otherwise return True.

    Only one minute per day qualifies, so with the default hourly poll a
    wake-up must land inside that minute. Every wake-up is phase-aligned to
    the top of the hour from the wall clock for this reason; a cadence finer
    than the poll period cannot be reached.

    Args:
        now: Current wall-clock time in the scheduler's zone.
        last_fired_day: Day of the last successful notification, or None.
        config: Scheduler configuration.

    Returns:
        True if the notification should be dispatched now.
    """
    if not is_trigger_time(now, config):
        return False

    if now.isoweekday() in config.skip_weekdays:
        return False

    return last_fired_day != now.date()


def build_message(
    result: ClassificationResult,
    today: date,
    config: NotificationConfig
) -> Optional[DispatchMessage]:
    """
    Build the daily notification for an urgent-window classification.

    Returns:
        The message, or None when nothing is urgent.
    """
    items = result.flagged()
    if not items:
        return None

    title = "Expired products" if result.expired else "Products expiring soon"
    body = ", ".join(item.product.name or UNNAMED_PRODUCT for item in items)
    return DispatchMessage(
        title=title,
        body=body,
        tag=f"{config.tag_prefix}-{today.isoformat()}",
        icon=config.icon,
        require_interaction=config.require_interaction,
    )


class PeriodicTask:
    """
    Calls ``callback(task)`` every ``interval`` seconds on a daemon thread.

    The task object is the cancellation token: cancel() stops further calls.
    Without ``next_delay``, deadlines are computed from the monotonic clock so
    periods do not drift. With it, the delay after each call is asked again,
    which lets the caller re-align to the wall clock after a suspend or a
    clock step.
    """

    def __init__(
        self,
        interval: float,
        callback: Callable[["PeriodicTask"], None],
        first_delay: Optional[float] = None,
        name: str = "periodic-task",
        next_delay: Optional[Callable[[], float]] = None,
    ):
        self.interval = interval
        self.callback = callback
        self.first_delay = interval if first_delay is None else first_delay
        self.next_delay = next_delay
        self._cancelled = threading.Event()
        self._thread = threading.Thread(target=self._run, name=name, daemon=True)

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def start(self) -> "PeriodicTask":
        self._thread.start()
        return self

    def cancel(self) -> None:
        self._cancelled.set()

    def join(self, timeout: Optional[float] = None) -> None:
        if self._thread.is_alive() and self._thread is not threading.current_thread():
            self._thread.join(timeout)

    def _delay_from_callable(self) -> float:
        try:
            return max(0.0, float(self.next_delay()))
        except Exception:
            logger.exception("Periodic task delay callable failed; using the fixed interval")
            return self.interval

    def _run(self) -> None:
        deadline = time.monotonic() + self.first_delay
        while not self._cancelled.wait(max(0.0, deadline - time.monotonic())):
            try:
                self.callback(self)
            except Exception:
                logger.exception("Periodic task callback failed")
            if self.next_delay is not None:
                deadline = time.monotonic() + self._delay_from_callable()
                continue
            deadline += self.interval
            # Skip periods missed while the host was suspended
            now = time.monotonic()
            if deadline < now:
                missed = int((now - deadline) // self.interval) + 1
                deadline += missed * self.interval


class SchedulerState(Enum):
    IDLE = "idle"
    ARMED = "armed"
    WAITING = "waiting"
    FIRING = "firing"
    STOPPED = "stopped"


class DailyScheduler:
    """
    Wakes up periodically and sends the daily expiry notification at most once per day.

    One instance should run per client process. start(), stop() and
    update_products() may be called from any thread, in any order.
    """

    def __init__(
        self,
        classifier: ExpiryClassifier,
        dispatcher: Dispatcher,
        state_store: NotificationStateStore,
        config: Optional[SchedulerConfig] = None,
        notification: Optional[NotificationConfig] = None,
        clock: Optional[Callable[[], datetime]] = None,
        task_factory: Callable[..., PeriodicTask] = PeriodicTask,
    ):
        self.classifier = classifier
        self.dispatcher = dispatcher
        self.state_store = state_store
        self.config = config or SchedulerConfig()
        self.notification = notification or NotificationConfig()
        tz = self.config.tzinfo()
        self.clock = clock or (lambda: datetime.now(tz))
        self.task_factory = task_factory

        self._lock = threading.RLock()           # guards state, task and firing
        self._snapshot_lock = threading.Lock()
        self._state = SchedulerState.IDLE
        self._task: Optional[PeriodicTask] = None
        self._products: List[Product] = []

    @property
    def state(self) -> SchedulerState:
        return self._state

    @property
    def products(self) -> List[Product]:
        with self._snapshot_lock:
            return list(self._products)

    def _next_delay(self) -> float:
        """Seconds until the next multiple of the poll interval since local midnight."""
        interval = self.config.poll_interval_seconds
        now = self.clock()
        elapsed = now.hour * 3600 + now.minute * 60 + now.second + now.microsecond / 1_000_000
        return interval - (elapsed % interval)

    def start(self, products: Iterable[Product]) -> None:
        """Store the product snapshot and arm the periodic wake-up. Never fires immediately."""
        self.update_products(products)
        with self._lock:
            if self._task is not None:
                logger.info("Scheduler already running; restarting timer")
                self._task.cancel()
            self._state = SchedulerState.ARMED
            self._task = self.task_factory(
                self.config.poll_interval_seconds,
                self._on_timer,
                first_delay=self._next_delay(),
                name="expiry-daily-scheduler",
                next_delay=self._next_delay,
            )
            self._task.start()
            logger.info(
                f"Daily check armed for {self.config.trigger_hour:02d}:{self.config.trigger_minute:02d} "
                f"(poll every {self.config.poll_interval_seconds}s, {len(self.products)} products)"
            )

    def stop(self) -> None:
        """
        Cancel the wake-up. Safe to call repeatedly.

        Waits for a wake-up that is already dispatching; no wake-up fires after
        this returns.
        """
        with self._lock:
            task = self._task
            self._task = None
            if task is not None:
                task.cancel()
            if self._state is not SchedulerState.STOPPED:
                logger.info("Daily check stopped")
            self._state = SchedulerState.STOPPED
        if task is not None:
            task.join(timeout=5)

    def update_products(self, products: Iterable[Product]) -> None:
        """Replace the product snapshot used by the next wake-up."""
        snapshot = list(products)
        with self._snapshot_lock:
            self._products = snapshot
        logger.debug(f"Product snapshot updated ({len(snapshot)} products)")

    def _on_timer(self, task: PeriodicTask) -> None:
        self.on_wake(token=task)

    def on_wake(self, now: Optional[datetime] = None, token: Optional[PeriodicTask] = None) -> bool:
        """
        Handle one wake-up.

        Args:
            now: Wall-clock time to evaluate (defaults to the clock).
            token: Task that triggered the wake-up; stale tokens are ignored.

        Returns:
            True if a notification was dispatched successfully.
        """
        with self._lock:
            if self._state not in (SchedulerState.ARMED, SchedulerState.WAITING):
                return False
            if token is not None and (token is not self._task or token.cancelled):
                return False
            self._state = SchedulerState.WAITING
            try:
                return self._fire_if_due(now or self.clock())
            except Exception:
                logger.exception("Daily check failed")
                return False
            finally:
                if self._state is SchedulerState.FIRING:
                    self._state = SchedulerState.WAITING

    def _fire_if_due(self, now: datetime) -> bool:
        if not is_trigger_time(now, self.config):
            logger.debug(f"Wake-up at {now:%H:%M}: not trigger time")
            return False

        today = now.date()
        last_fired_day = self.state_store.get_last_fired_day()
        if not should_fire_now(now, last_fired_day, self.config):
            if last_fired_day == today:
                logger.info(f"Already notified on {today.isoformat()}; skipping")
            else:
                logger.info(f"{now:%A} is a skipped weekday")
            return False

        result = self.classifier.classify(self.products, today, URGENT_WINDOW)
        message = build_message(result, today, self.notification)
        if message is None:
            logger.info("No expired or soon-expiring products; nothing to send")
            return False

        self._state = SchedulerState.FIRING
        logger.info(f"Sending daily notification '{message.title}' ({message.tag})")
        outcome = self.dispatcher.send(message)
        if not outcome.success:
            logger.warning(f"Daily notification not delivered ({outcome.error}); will retry on next wake-up")
            return False

        self.state_store.set_last_fired_day(today)
        return True
