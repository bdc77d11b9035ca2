from geodir.notifications.notifier import (
    ConfirmationMailer,
    DispatchError,
    EntrySummary,
    Notifier,
    PermanentDispatchError,
    RetryableDispatchError,
)
from geodir.notifications.resend import ResendNotifier

__all__ = [
    "ConfirmationMailer",
    "DispatchError",
    "EntrySummary",
    "Notifier",
    "PermanentDispatchError",
    "ResendNotifier",
    "RetryableDispatchError",
]
