from __future__ import annotations

import logging

from datastore.mock_documents import MockDocumentCollection
from models.profiles import NotificationPreferences, UserProfile
from services.notifications import EmailNotification, NotificationService


def _collection() -> MockDocumentCollection[UserProfile]:
    collection = MockDocumentCollection(name="users", model=UserProfile)
    collection.put_item(
        "uid-b", UserProfile(notification_preferences=NotificationPreferences(email_enabled=True))
    )
    collection.put_item("uid-c", UserProfile())
    collection.put_item(
        "uid-a", UserProfile(notification_preferences=NotificationPreferences(email_enabled=True))
    )
    return collection


def test_recipients_include_only_opted_in_users() -> None:
    service = NotificationService(profiles=_collection())

    assert service.recipients() == ["uid-a", "uid-b"]


def test_send_email_logs_and_counts_recipients(caplog) -> None:
    service = NotificationService(profiles=_collection())

    with caplog.at_level(logging.INFO):
        count = service.send_email(
            EmailNotification(subject="High COD", text="COD above limit", device_id="RPi001", level="warning")
        )

    assert count == 2
    records = [record for record in caplog.records if record.name == "services.notifications"]
    assert records
    assert records[0].getMessage() == "Sending email notification: High COD"
    assert getattr(records[0], "device_id") == "RPi001"
    assert getattr(records[0], "recipients") == 2
