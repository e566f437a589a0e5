from __future__ import annotations
import json
from functools import lru_cache
from pathlib import Path
from threading import Lock
from typing import Any, Dict, Generic, Optional, Type, TypeVar

from pydantic import BaseModel

from models.profiles import UserProfile
from settings import get_settings

DocumentT = TypeVar("DocumentT", bound=BaseModel)


class MockDocumentCollection(Generic[DocumentT]):
    """In-process stand-in for a hosted document collection."""

    def __init__(
        self,
        name: str,
        model: Type[DocumentT],
        persistence_path: Optional[Path] = None,
    ) -> None:
        self.name = name
        self.model = model
        self._documents: Dict[str, DocumentT] = {}
        self.persistence_path = persistence_path
        self._lock = Lock()
        if persistence_path:
            persistence_path.parent.mkdir(parents=True, exist_ok=True)
            self._load_from_disk()

    def put_item(self, document_id: str, document: DocumentT) -> None:
        with self._lock:
            self._documents[document_id] = document.model_copy(deep=True)
            self._persist()

    def get_item(self, document_id: str) -> Optional[DocumentT]:
        with self._lock:
            document = self._documents.get(document_id)
            if document is None:
                return None
            return document.model_copy(deep=True)

    def update_item(self, document_id: str, **fields: Any) -> DocumentT:
        """Merge ``fields`` into an existing document and return the result."""
        with self._lock:
            current = self._documents.get(document_id)
            if current is None:
                raise KeyError(
                    f"Document {document_id!r} not found in collection {self.name!r}."
                )
            merged = self.model.model_validate({**current.model_dump(), **fields})
            self._documents[document_id] = merged
            self._persist()
            return merged.model_copy(deep=True)

    def scan(self) -> dict[str, DocumentT]:
        """Return deep copies of all stored documents keyed by id."""

        with self._lock:
            return {
                document_id: document.model_copy(deep=True)
                for document_id, document in self._documents.items()
            }

    def _persist(self) -> None:
        if not self.persistence_path:
            return
        payload = {
            document_id: document.model_dump(mode="json")
            for document_id, document in self._documents.items()
        }
        self.persistence_path.write_text(json.dumps(payload, indent=2, sort_keys=True))

    def _load_from_disk(self) -> None:
        if not self.persistence_path or not self.persistence_path.exists():
            return

        try:
            raw = self.persistence_path.read_text() or "{}"
            data = json.loads(raw)
        except (OSError, json.JSONDecodeError):
            data = {}

        for document_id, payload in data.items():
            self._documents[document_id] = self.model.model_validate(payload)


@lru_cache
def build_default_profiles(
    name: Optional[str] = None,
    path: Optional[str] = None,
) -> MockDocumentCollection[UserProfile]:
    settings = get_settings()
    collection_name = settings.profile_collection_name if name is None else name
    collection_path = settings.profile_persistence_path if path is None else path
    persistence = Path(collection_path) if collection_path else None
    return MockDocumentCollection(
        name=collection_name, model=UserProfile, persistence_path=persistence
    )
