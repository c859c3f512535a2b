from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Generic, TypeVar

from evvl.models import RunConfig, StoredRecord

RecordT = TypeVar("RecordT", bound=StoredRecord)


class DocumentStore(ABC):
    """A single document mapping collection keys to JSON values.

    ``save`` rewrites the whole document: it reads every key, replaces one and
    writes everything back. Two processes saving *different* keys at the same
    time can therefore still lose one of the updates (last writer wins per
    file, not per key). Callers must tolerate eventual consistency across keys.
    """

    @abstractmethod
    def load(self, key: str) -> Any | None:
        """Return the value under ``key``; ``None`` if absent or unreadable."""
        raise NotImplementedError

    @abstractmethod
    def save(self, key: str, value: Any) -> None:
        """Persist ``value`` under ``key``. Raises ``StoreIOError``."""
        raise NotImplementedError

    @abstractmethod
    def keys(self) -> list[str]:
        raise NotImplementedError


class CollectionRepo(ABC, Generic[RecordT]):
    @abstractmethod
    def list(self) -> list[RecordT]:
        raise NotImplementedError

    @abstractmethod
    def save_all(self, records: list[RecordT]) -> None:
        raise NotImplementedError

    @abstractmethod
    def get(self, record_id: str) -> RecordT | None:
        raise NotImplementedError


class NamedCollectionRepo(CollectionRepo[RecordT]):
    @abstractmethod
    def find_by_name(self, name: str, project_id: str | None = None) -> RecordT | None:
        raise NotImplementedError

    @abstractmethod
    def find(self, token: str) -> RecordT | None:
        """Id match first, then case-insensitive name match."""
        raise NotImplementedError


class ProjectScopedRepo(NamedCollectionRepo[RecordT]):
    @abstractmethod
    def list_for_project(self, project_id: str) -> list[RecordT]:
        raise NotImplementedError


class RunQueue(ABC):
    @abstractmethod
    def push(self, config: RunConfig) -> None:
        raise NotImplementedError

    @abstractmethod
    def peek(self) -> list[RunConfig]:
        raise NotImplementedError

    @abstractmethod
    def drain(self) -> list[RunConfig]:
        """Return every queued run and clear the queue."""
        raise NotImplementedError
