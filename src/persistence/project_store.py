"""
Project record persistence.

Records are created once per successful generation and never updated. Two
backends: an in-process dict, and a YAML file for single-node deployments.
"""

import asyncio
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from common.config import PersistenceConfig
from common.errors import PersistenceError
from common.logging import get_logger
from common.models import ProjectFiles, ProjectRecord, derive_title

logger = get_logger(__name__)


class ProjectStore(ABC):
    """Append-only store of project records, keyed by account."""

    async def create_project_record(
        self,
        account_id: str,
        prompt: str,
        overview: str,
        files: ProjectFiles,
        index_file: str = "index.html",
        model: Optional[str] = None,
        title: Optional[str] = None,
        created_at: Optional[datetime] = None,
    ) -> ProjectRecord:
        """Build and store a new record. Title defaults to the overview's first line."""
        fields: Dict[str, Any] = {
            "account_id": account_id,
            "prompt": prompt,
            "overview": overview,
            "files": dict(files),
            "index_file": index_file,
            "model": model,
            "title": title or derive_title(overview, prompt),
        }
        if created_at is not None:
            fields["created_at"] = created_at
        record = ProjectRecord(**fields)
        await self.add(record)
        logger.info(
            event="project_record_created",
            record_id=record.id,
            account_id=account_id,
            file_count=len(record.files),
        )
        return record

    @abstractmethod
    async def add(self, record: ProjectRecord) -> None:
        """Store a record."""

    @abstractmethod
    async def list_for_account(self, account_id: str) -> List[ProjectRecord]:
        """Records owned by the account, newest first."""

    @abstractmethod
    async def get(self, record_id: str) -> Optional[ProjectRecord]:
        """A record by id, or None."""


class InMemoryProjectStore(ProjectStore):
    """Process-local store; contents are lost on restart."""

    def __init__(self) -> None:
        self._records: Dict[str, ProjectRecord] = {}

    async def add(self, record: ProjectRecord) -> None:
        if record.id in self._records:
            raise PersistenceError(f"Record '{record.id}' already exists")
        self._records[record.id] = record

    async def list_for_account(self, account_id: str) -> List[ProjectRecord]:
        records = [r for r in self._records.values() if r.account_id == account_id]
        return sorted(records, key=lambda r: r.created_at, reverse=True)

    async def get(self, record_id: str) -> Optional[ProjectRecord]:
        return self._records.get(record_id)


class YamlProjectStore(InMemoryProjectStore):
    """In-memory store mirrored to a YAML file after every write."""

    def __init__(self, path: Path):
        super().__init__()
        self.path = path
        self._lock = asyncio.Lock()
        self._load()

    def _load(self) -> None:
        if not self.path.exists():
            return
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise PersistenceError(f"Failed to load project records from {self.path}", str(e)) from e

        for raw in data.get("projects", []):
            record = ProjectRecord.model_validate(raw)
            self._records[record.id] = record

        logger.info(event="project_records_loaded", path=str(self.path), count=len(self._records))

    def _save(self) -> None:
        data = {"projects": [r.model_dump(mode="json") for r in self._records.values()]}
        try:
            with open(self.path, "w", encoding="utf-8") as f:
                yaml.safe_dump(data, f, default_flow_style=False, allow_unicode=True, sort_keys=False)
        except OSError as e:
            raise PersistenceError(f"Failed to save project records to {self.path}", str(e)) from e

    async def add(self, record: ProjectRecord) -> None:
        async with self._lock:
            await super().add(record)
            try:
                self._save()
            except PersistenceError:
                self._records.pop(record.id, None)
                raise


def create_project_store(config: PersistenceConfig) -> ProjectStore:
    if config.backend == "yaml":
        return YamlProjectStore(Path(config.path))
    if config.backend == "memory":
        return InMemoryProjectStore()
    raise ValueError(f"Unknown persistence backend '{config.backend}'")
