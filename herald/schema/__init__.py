"""Schema package exports."""

from .delivery import DeliveryAttempt, DeviceToken
from .notification_preferences import NotificationPreference, NotificationSettings
from .notifications import Notification, NotificationTemplate

__all__ = ["DeliveryAttempt", "DeviceToken", "Notification", "NotificationPreference", "NotificationSettings", "NotificationTemplate"]
