"""Composition root wiring the classifier, state, dispatcher and scheduler."""

import logging
from datetime import date
from typing import Callable, Iterable, List, Optional

from .channels import (
    DirectNotificationChannel,
    DirectNotifier,
    NotificationChannel,
    PlatformNotifier,
    PlatformNotifierChannel,
    SmsChannel,
)
from .classifier import DISPLAY_WINDOW, ExpiryClassifier, reference_day
from .config import AppConfig
from .dispatcher import Dispatcher
from .models import ClassificationResult, Product
from .scheduler import DailyScheduler, PeriodicTask
from .state import KeyValueStore, NotificationStateStore

logger = logging.getLogger(__name__)


def build_channels(
    config: AppConfig,
    platform_notifier: Optional[PlatformNotifier] = None,
    direct_notifier: Optional[DirectNotifier] = None,
    focus_host: Optional[Callable[[], None]] = None,
) -> List[NotificationChannel]:
    """Channels in order of preference: platform notifier, direct notification, SMS."""
    channels: List[NotificationChannel] = []
    if platform_notifier is not None:
        channels.append(PlatformNotifierChannel(platform_notifier, focus_host=focus_host))
    if direct_notifier is not None:
        channels.append(DirectNotificationChannel(
            direct_notifier,
            focus_host=focus_host,
            display_seconds=config.notification.display_seconds,
        ))
    if config.notification.sms_enabled:
        channels.append(SmsChannel(config.twilio))
    return channels


class NotificationService:
    """
    Expiry notifications for one client process.

    Created explicitly by the host application and started/stopped by it.
    Only one instance should be running per process.
    """

    def __init__(
        self,
        config: AppConfig,
        store: KeyValueStore,
        platform_notifier: Optional[PlatformNotifier] = None,
        direct_notifier: Optional[DirectNotifier] = None,
        permission_granted: Optional[Callable[[], bool]] = None,
        focus_host: Optional[Callable[[], None]] = None,
        clock=None,
        task_factory=PeriodicTask,
    ):
        self.config = config
        self.tz = config.scheduler.tzinfo()
        self.classifier = ExpiryClassifier(self.tz)
        self.state_store = NotificationStateStore(store)
        self.dispatcher = Dispatcher(
            build_channels(config, platform_notifier, direct_notifier, focus_host),
            permission_granted=permission_granted,
        )
        self.scheduler = DailyScheduler(
            classifier=self.classifier,
            dispatcher=self.dispatcher,
            state_store=self.state_store,
            config=config.scheduler,
            notification=config.notification,
            clock=clock,
            task_factory=task_factory,
        )

    def start(self, products: Iterable[Product]) -> None:
        self.scheduler.start(products)

    def stop(self) -> None:
        self.scheduler.stop()

    def on_products(self, products: Iterable[Product]) -> None:
        """Product feed callback: each snapshot replaces the previous one."""
        self.scheduler.update_products(products)

    def display(self, products: Iterable[Product], today: Optional[date] = None) -> ClassificationResult:
        """Expired / critical / warning buckets for on-screen banners."""
        if today is None:
            today = reference_day(tz=self.tz)
        return self.classifier.classify(products, today, DISPLAY_WINDOW)

    def __enter__(self) -> "NotificationService":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()
