"""Delivery channel senders."""

from .base import (
    ChannelPolicy,
    ChannelRegistry,
    ChannelSender,
    MailTransport,
    RealtimePublisher,
    SendReceipt,
)
from .email import EmailChannelSender, render_email, user_email_lookup
from .realtime import NO_SUBSCRIBER, RealtimeChannelSender

__all__ = [
    "ChannelPolicy",
    "ChannelRegistry",
    "ChannelSender",
    "EmailChannelSender",
    "MailTransport",
    "NO_SUBSCRIBER",
    "RealtimeChannelSender",
    "RealtimePublisher",
    "SendReceipt",
    "render_email",
    "user_email_lookup",
]
