"""
Notifications module - In-app and e-mail notifications.
"""

from rtb_assets.modules.notifications.models import Notification, NotificationType
from rtb_assets.modules.notifications.service import notify_roles, notify_user

__all__ = ["Notification", "NotificationType", "notify_roles", "notify_user"]
