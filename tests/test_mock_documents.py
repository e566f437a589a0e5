"""Unit tests for the mock document collection."""

from __future__ import annotations

import json

import pytest

from datastore.mock_documents import MockDocumentCollection
from models.profiles import NotificationPreferences, Role, UserProfile


def _sample_profile(name: str = "Plant operator") -> UserProfile:
    return UserProfile(
        name=name,
        company="Acme Water",
        role=Role.developer,
        onboarding_complete=True,
        permissions=["view:basic", "train:models"],
        notification_preferences=NotificationPreferences(email_enabled=True),
    )


def test_put_and_get_round_trip_returns_deep_copy() -> None:
    collection = MockDocumentCollection(name="users", model=UserProfile)
    original = _sample_profile()

    collection.put_item("uid-1", original)
    fetched = collection.get_item("uid-1")

    assert fetched is not None
    assert fetched == original
    assert fetched is not original

    # Mutating the fetched instance should not affect stored data
    fetched.permissions.append("admin:all")
    fetched_again = collection.get_item("uid-1")
    assert fetched_again is not None
    assert fetched_again.permissions == ["view:basic", "train:models"]


def test_get_item_returns_none_when_missing() -> None:
    collection = MockDocumentCollection(name="users", model=UserProfile)

    assert collection.get_item("missing-id") is None


def test_update_item_merges_fields() -> None:
    collection = MockDocumentCollection(name="users", model=UserProfile)
    collection.put_item("uid-1", UserProfile())

    updated = collection.update_item("uid-1", onboarding_complete=True, role="admin")

    assert updated.onboarding_complete is True
    assert updated.role is Role.admin
    assert updated.permissions == ["view:basic"]


def test_update_item_requires_existing_document() -> None:
    collection = MockDocumentCollection(name="users", model=UserProfile)

    with pytest.raises(KeyError):
        collection.update_item("missing-id", onboarding_complete=True)


def test_put_item_persists_to_disk_and_reloads(tmp_path) -> None:
    path = tmp_path / "profiles.json"
    collection = MockDocumentCollection(name="users", model=UserProfile, persistence_path=path)
    profile = _sample_profile()

    collection.put_item("uid-1", profile)

    payload = json.loads(path.read_text())
    assert payload["uid-1"]["role"] == "developer"
    assert payload["uid-1"]["notification_preferences"] == {"email_enabled": True}

    reloaded = MockDocumentCollection(name="users", model=UserProfile, persistence_path=path)
    assert reloaded.get_item("uid-1") == profile


def test_scan_returns_all_documents_as_deep_copies() -> None:
    collection = MockDocumentCollection(name="users", model=UserProfile)
    collection.put_item("uid-1", _sample_profile("first"))
    collection.put_item("uid-2", _sample_profile("second"))

    scanned = collection.scan()
    assert sorted(scanned) == ["uid-1", "uid-2"]

    scanned["uid-1"].name = "changed"
    assert collection.scan()["uid-1"].name == "first"
