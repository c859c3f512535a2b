from __future__ import annotations

import json
import logging
import os
import uuid
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from evvl.errors import StoreIOError
from evvl.models import (
    CollectionKey,
    DataSet,
    EvaluationRun,
    Project,
    ProjectModelConfig,
    Prompt,
    RunConfig,
    RunStatus,
)
from evvl.storage.interfaces import (
    CollectionRepo,
    DocumentStore,
    NamedCollectionRepo,
    ProjectScopedRepo,
    RecordT,
    RunQueue,
)

logger = logging.getLogger(__name__)


def _same_name(a: str, b: str) -> bool:
    return a.casefold() == b.casefold()


class JsonDocumentStore(DocumentStore):
    def __init__(self, path: Path):
        self.path = path

    def _read(self, strict: bool = False) -> dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            raw = self.path.read_text(encoding="utf-8")
        except OSError as exc:
            if strict:
                raise StoreIOError(f"Failed to read {self.path}: {exc}") from exc
            logger.warning("Could not read store %s: %s", self.path, exc)
            return {}
        try:
            data = json.loads(raw)
        except ValueError as exc:
            logger.warning("Store %s is not valid JSON, treating it as empty: %s", self.path, exc)
            return {}
        return data if isinstance(data, dict) else {}

    def load(self, key: str) -> Any | None:
        return self._read().get(key)

    def save(self, key: str, value: Any) -> None:
        tmp_path = self.path.with_name(f".{self.path.name}.tmp-{uuid.uuid4().hex}")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            document = self._read(strict=True)
            document[key] = value
            text = json.dumps(document, indent=2, ensure_ascii=False)
            try:
                tmp_path.write_text(text, encoding="utf-8")
                os.replace(tmp_path, self.path)
            finally:
                if tmp_path.exists():
                    tmp_path.unlink()
        except (OSError, TypeError, ValueError) as exc:
            raise StoreIOError(f"Failed to save '{key}' to {self.path}: {exc}") from exc
        logger.debug("Saved %s to %s", key, self.path)

    def keys(self) -> list[str]:
        return list(self._read())


class _JsonCollection(CollectionRepo[RecordT]):
    key: CollectionKey
    record_type: type[RecordT]

    def __init__(self, store: DocumentStore):
        self.store = store

    def _load_raw(self) -> list[Any]:
        value = self.store.load(self.key.value)
        if value is None:
            return []
        if not isinstance(value, list):
            logger.warning("Ignoring non-list value stored under %s", self.key.value)
            return []
        return value

    def _parse(self, raw: list[Any], quiet: bool = False) -> tuple[list[RecordT], dict[int, Any]]:
        records: list[RecordT] = []
        rejected: dict[int, Any] = {}
        for index, item in enumerate(raw):
            try:
                records.append(self.record_type.model_validate(item))
            except ValidationError as exc:
                if not quiet:
                    logger.warning(
                        "Skipping malformed record #%d in %s (%d validation errors)",
                        index,
                        self.key.value,
                        exc.error_count(),
                    )
                rejected[index] = item
        return records, rejected

    def list(self) -> list[RecordT]:
        records, _ = self._parse(self._load_raw())
        return records

    def save_all(self, records: list[RecordT]) -> None:
        # Records this version cannot parse are written back untouched, in their old slots.
        raw = self._load_raw()
        _, rejected = self._parse(raw, quiet=True)
        pending = iter(records)
        merged: list[Any] = []
        for index in range(len(raw)):
            if index in rejected:
                merged.append(rejected[index])
                continue
            record = next(pending, None)
            if record is not None:
                merged.append(record.to_store())
        merged.extend(r.to_store() for r in pending)
        self.store.save(self.key.value, merged)

    def get(self, record_id: str) -> RecordT | None:
        for record in self.list():
            if record.id == record_id:
                return record
        return None

    def add(self, record: RecordT) -> None:
        records = self.list()
        records.append(record)
        self.save_all(records)

    def update(self, record: RecordT) -> None:
        records = self.list()
        for index, existing in enumerate(records):
            if existing.id == record.id:
                records[index] = record
                break
        else:
            records.append(record)
        self.save_all(records)


class _JsonScopedCollection(_JsonCollection[RecordT], ProjectScopedRepo[RecordT]):
    def list_for_project(self, project_id: str) -> list[RecordT]:
        return [r for r in self.list() if r.project_id == project_id]

    def find_by_name(self, name: str, project_id: str | None = None) -> RecordT | None:
        for record in self.list():
            if project_id is not None and record.project_id != project_id:
                continue
            if _same_name(record.name, name):
                return record
        return None

    def find(self, token: str) -> RecordT | None:
        record = self.get(token)
        if record is not None:
            return record
        return self.find_by_name(token)


class JsonProjectRepo(_JsonCollection[Project], NamedCollectionRepo[Project]):
    key = CollectionKey.PROJECTS
    record_type = Project

    def find_by_name(self, name: str, project_id: str | None = None) -> Project | None:
        _ = project_id
        for project in self.list():
            if _same_name(project.name, name):
                return project
        return None

    def find(self, token: str) -> Project | None:
        projects = self.list()
        for project in projects:
            if project.id == token:
                return project
        for project in projects:
            if _same_name(project.name, token):
                return project
        return None


class JsonPromptRepo(_JsonScopedCollection[Prompt]):
    key = CollectionKey.PROMPTS
    record_type = Prompt


class JsonModelConfigRepo(_JsonScopedCollection[ProjectModelConfig]):
    key = CollectionKey.MODEL_CONFIGS
    record_type = ProjectModelConfig


class JsonDataSetRepo(_JsonScopedCollection[DataSet]):
    key = CollectionKey.DATA_SETS
    record_type = DataSet


class JsonEvaluationRunRepo(_JsonCollection[EvaluationRun]):
    key = CollectionKey.EVALUATION_RUNS
    record_type = EvaluationRun

    def latest_completed(self) -> EvaluationRun | None:
        completed = [r for r in self.list() if r.status == RunStatus.COMPLETED]
        if not completed:
            return None
        return max(completed, key=lambda r: r.created_at)


class PendingRunQueue(RunQueue):
    """Runs handed from the CLI to the GUI, which drains the queue on read."""

    key = CollectionKey.PENDING_CLI_RUNS

    def __init__(self, store: DocumentStore):
        self.store = store

    def _load_raw(self) -> list[Any]:
        value = self.store.load(self.key.value)
        return value if isinstance(value, list) else []

    def push(self, config: RunConfig) -> None:
        raw = self._load_raw()
        raw.append(config.to_store())
        self.store.save(self.key.value, raw)

    def peek(self) -> list[RunConfig]:
        out: list[RunConfig] = []
        for item in self._load_raw():
            try:
                out.append(RunConfig.model_validate(item))
            except ValidationError:
                logger.warning("Skipping malformed pending run in %s", self.key.value)
        return out

    def drain(self) -> list[RunConfig]:
        runs = self.peek()
        self.store.save(self.key.value, [])
        return runs
