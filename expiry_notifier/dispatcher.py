"""Delivery of notifications through an ordered chain of channels."""

import logging
from typing import Callable, List, Optional, Sequence

from .channels import NotificationChannel
from .errors import ChannelUnavailable, SendFailure
from .models import DispatchMessage, DispatchResult

logger = logging.getLogger(__name__)


class Dispatcher:
    """
    Tries channels in order and reports the first success.

    Channels that are not available are skipped; a channel that raises or
    reports failure hands over to the next one. Errors never escape send().
    """

    def __init__(
        self,
        channels: Sequence[NotificationChannel],
        permission_granted: Optional[Callable[[], bool]] = None,
    ):
        """
        Initialize the dispatcher.

        Args:
            channels: Channels in order of preference.
            permission_granted: Host gate for showing notifications. None means granted.
        """
        self.channels: List[NotificationChannel] = list(channels)
        self.permission_granted = permission_granted

    def _has_permission(self) -> bool:
        if self.permission_granted is None:
            return True
        try:
            return bool(self.permission_granted())
        except Exception as e:
            logger.error(f"Permission check failed: {e}")
            return False

    def _usable_channels(self) -> List[NotificationChannel]:
        permitted = None
        usable = []
        for channel in self.channels:
            if channel.requires_permission:
                if permitted is None:
                    permitted = self._has_permission()
                if not permitted:
                    logger.debug(f"Skipping channel '{channel.name}': notification permission not granted")
                    continue
            try:
                available = channel.is_available()
            except Exception as e:
                logger.warning(f"Availability check failed for channel '{channel.name}': {e}")
                available = False
            if available:
                usable.append(channel)
            else:
                logger.debug(f"Skipping channel '{channel.name}': not available")
        return usable

    def _deliver(self, message: DispatchMessage) -> str:
        usable = self._usable_channels()
        if not usable:
            raise ChannelUnavailable("No notification channel is available")

        failures: List[SendFailure] = []
        for channel in usable:
            try:
                if channel.send(message):
                    return channel.name
                failure = SendFailure(channel.name, "channel reported failure")
            except Exception as e:
                failure = SendFailure(channel.name, str(e))
            logger.warning(f"{failure}; trying next channel")
            failures.append(failure)

        raise SendFailure(
            ", ".join(f.channel for f in failures),
            "; ".join(f.reason for f in failures),
        )

    def send(self, message: DispatchMessage) -> DispatchResult:
        """
        Send a message through the best available channel.

        Returns:
            A DispatchResult; success is False when no channel delivered it.
        """
        try:
            channel = self._deliver(message)
        except ChannelUnavailable as e:
            logger.warning(f"Dispatch skipped: {e}")
            return DispatchResult(success=False, error=str(e))
        except SendFailure as e:
            logger.error(f"Dispatch failed: {e}")
            return DispatchResult(success=False, channel=e.channel, error=str(e))

        logger.info(f"Dispatched '{message.tag}' via {channel}")
        return DispatchResult(success=True, channel=channel)
