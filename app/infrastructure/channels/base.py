"""Capability shared by every delivery channel."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, ClassVar, Iterable, Protocol

from app.domain.entities import DeliveryChannel, Notification


@dataclass(frozen=True)
class ChannelPolicy:
    """How the engine treats failures on a channel.

    ``durable`` channels promise eventual delivery, so their unfinished attempts
    are resumed after a restart; ``retryable`` channels get transient failures
    re-attempted with backoff instead of failing at once.
    """

    durable: bool
    retryable: bool


@dataclass(frozen=True)
class SendReceipt:
    """Successful hand-off of a notification to a channel."""

    channel: DeliveryChannel
    recipients: int = 1
    detail: str | None = None


class MailTransport(Protocol):
    def deliver(self, address: str, subject: str, body: str) -> None: ...


class RealtimePublisher(Protocol):
    def publish(self, user_id: int, payload: dict[str, Any]) -> Any: ...


class ChannelSender(ABC):
    """Perform exactly one delivery attempt of a notification on one channel.

    Implementations raise :class:`~app.domain.errors.TransientChannelError` or
    :class:`~app.domain.errors.PermanentChannelError` on failure and never retry
    internally.
    """

    channel: ClassVar[DeliveryChannel]
    policy: ClassVar[ChannelPolicy]

    @abstractmethod
    def send(self, notification: Notification) -> SendReceipt:
        """Attempt delivery of ``notification``."""


class ChannelRegistry:
    """Select the sender for a channel by its tag."""

    def __init__(self, senders: Iterable[ChannelSender]) -> None:
        self._senders: dict[DeliveryChannel, ChannelSender] = {}
        for sender in senders:
            if sender.channel in self._senders:
                raise ValueError(f"Duplicate sender for channel {sender.channel.value}")
            self._senders[sender.channel] = sender

    @property
    def channels(self) -> frozenset[DeliveryChannel]:
        return frozenset(self._senders)

    def get(self, channel: DeliveryChannel) -> ChannelSender:
        try:
            return self._senders[DeliveryChannel(channel)]
        except KeyError as exc:
            raise LookupError(f"No sender registered for channel {channel}") from exc


__all__ = [
    "ChannelPolicy",
    "ChannelRegistry",
    "ChannelSender",
    "MailTransport",
    "RealtimePublisher",
    "SendReceipt",
]
