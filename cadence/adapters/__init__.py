"""Action dispatch adapters: interfaces to the sending service and subscriber data."""

from cadence.adapters.alerts import AlertWebhook, attach_alerts
from cadence.adapters.base import EmailSender, PublicationStore, SubscriberStore, TagStore
from cadence.adapters.email import HttpEmailSender, LoggingEmailSender, build_email_sender
from cadence.adapters.memory import InMemoryDirectory
from cadence.adapters.platform import PlatformDirectory, build_directory

__all__ = [
    "AlertWebhook", "attach_alerts",
    "EmailSender", "PublicationStore", "SubscriberStore", "TagStore",
    "HttpEmailSender", "LoggingEmailSender", "build_email_sender",
    "InMemoryDirectory", "PlatformDirectory", "build_directory",
]
