"""Email notification fan-out.

Delivery is simulated: recipients are resolved from user profiles and the
notification is logged instead of sent.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from functools import lru_cache
from typing import List, Optional

from datastore.mock_documents import MockDocumentCollection, build_default_profiles
from models.profiles import UserProfile

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EmailNotification:
    subject: str
    text: str
    device_id: Optional[str] = None
    level: Optional[str] = None


class NotificationService:
    def __init__(self, profiles: MockDocumentCollection[UserProfile]) -> None:
        self.profiles = profiles

    def recipients(self) -> List[str]:
        return sorted(
            uid
            for uid, profile in self.profiles.scan().items()
            if profile.notification_preferences.email_enabled
        )

    def send_email(self, notification: EmailNotification) -> int:
        """Return the number of users the notification is addressed to."""
        recipients = self.recipients()
        logger.info(
            "Sending email notification: %s",
            notification.subject,
            extra={
                "device_id": notification.device_id,
                "level": notification.level,
                "recipients": len(recipients),
            },
        )
        return len(recipients)


@lru_cache
def build_default_notifications() -> NotificationService:
    return NotificationService(profiles=build_default_profiles())
