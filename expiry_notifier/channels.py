"""Notification channels the dispatcher can deliver through."""

import logging
import threading
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Optional, Protocol

from twilio.rest import Client

from .config import TwilioConfig
from .models import DispatchMessage

logger = logging.getLogger(__name__)


class PlatformNotifier(Protocol):
    """OS-level notification surface usable without a user gesture (e.g. a service worker)."""

    def is_ready(self) -> bool: ...

    def show_notification(self, title: str, options: Dict[str, Any]) -> None: ...


class NotificationHandle(Protocol):
    """A visible notification returned by the direct notification surface."""

    on_click: Optional[Callable[[], None]]

    def close(self) -> None: ...


class DirectNotifier(Protocol):
    """Gesture-scoped notification primitive of the host."""

    def is_supported(self) -> bool: ...

    def show(self, title: str, options: Dict[str, Any]) -> NotificationHandle: ...


class NotificationChannel(ABC):
    """Abstract base class for delivery channels."""

    name: str = ""
    requires_permission: bool = True   # gated by the host's notification permission

    @abstractmethod
    def is_available(self) -> bool:
        """Whether the channel can be used right now."""
        pass

    @abstractmethod
    def send(self, message: DispatchMessage) -> bool:
        """
        Deliver a message.

        Returns:
            True if the channel accepted the message. Channels may also raise.
        """
        pass


def _options(message: DispatchMessage) -> Dict[str, Any]:
    options = {
        "body": message.body,
        "tag": message.tag,
        "require_interaction": message.require_interaction,
        "silent": False,
    }
    if message.icon:
        options["icon"] = message.icon
        options["badge"] = message.icon
    return options


class PlatformNotifierChannel(NotificationChannel):
    """Preferred channel: the platform notifier manages its own lifecycle."""

    name = "platform"

    def __init__(self, notifier: PlatformNotifier, focus_host: Optional[Callable[[], None]] = None):
        self.notifier = notifier
        self.focus_host = focus_host

    def is_available(self) -> bool:
        return self.notifier is not None and bool(self.notifier.is_ready())

    def send(self, message: DispatchMessage) -> bool:
        options = _options(message)
        options["vibrate"] = list(message.vibrate)
        if self.focus_host is not None:
            options["on_click"] = self.focus_host
        self.notifier.show_notification(message.title, options)
        logger.info(f"Notification shown via platform notifier: {message.title}")
        return True


class DirectNotificationChannel(NotificationChannel):
    """Fallback channel: shows the notification directly and closes it after a delay."""

    name = "direct"

    def __init__(
        self,
        notifier: DirectNotifier,
        focus_host: Optional[Callable[[], None]] = None,
        display_seconds: float = 10.0,
        timer_factory: Callable[[float, Callable[[], None]], Any] = threading.Timer,
    ):
        self.notifier = notifier
        self.focus_host = focus_host
        self.display_seconds = display_seconds
        self.timer_factory = timer_factory

    def is_available(self) -> bool:
        return self.notifier is not None and bool(self.notifier.is_supported())

    def send(self, message: DispatchMessage) -> bool:
        handle = self.notifier.show(message.title, _options(message))

        def on_click() -> None:
            if self.focus_host is not None:
                self.focus_host()
            handle.close()

        handle.on_click = on_click

        if self.display_seconds and self.display_seconds > 0:
            timer = self.timer_factory(self.display_seconds, handle.close)
            if hasattr(timer, "daemon"):
                timer.daemon = True
            timer.start()

        logger.info(f"Notification shown via direct notifier: {message.title}")
        return True


class SmsChannel(NotificationChannel):
    """Last-resort channel sending the notification text by SMS through Twilio."""

    name = "sms"
    requires_permission = False

    def __init__(self, config: Optional[TwilioConfig]):
        self.config = config

    def is_available(self) -> bool:
        return self.config is not None

    def send(self, message: DispatchMessage) -> bool:
        text = f"{message.title}\n{message.body}"
        if not text.strip():
            logger.info("Message is empty; not sending SMS.")
            return False

        try:
            client = Client(self.config.account_sid, self.config.auth_token)
            message_obj = client.messages.create(
                body=text,
                from_=self.config.from_number,
                to=self.config.to_number
            )
            logger.info(f"SMS sent successfully. SID: {message_obj.sid}")
            logger.debug(f"Message preview: {text[:50]}...")
            return True
        except Exception as e:
            error_str = str(e)
            if "20003" in error_str or "Authenticate" in error_str or "401" in error_str:
                logger.error(
                    "Twilio authentication failed (Error 20003). "
                    "Check TWILIO_ACCOUNT_SID and TWILIO_AUTH_TOKEN. "
                    f"Current Account SID (first 10 chars): {self.config.account_sid[:10]}..."
                )
            else:
                logger.error(f"Failed to send SMS: {e}")
            raise
