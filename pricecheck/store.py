"""Repository layer for the canonical pricing dataset"""

from abc import ABC, abstractmethod
from datetime import datetime, timezone
import json
import os
from pathlib import Path
import tempfile
from typing import Any, Optional, Union

from pydantic import ValidationError as PydanticValidationError
from supabase import create_client
import structlog

from pricecheck.errors import StoreConflictError, StoreWriteError, ValidationError
from pricecheck.models import CanonicalDataset

logger = structlog.get_logger(__name__)


def atomic_write_json(path: Union[str, Path], data: Any) -> None:
    """
    Write JSON to ``path`` by replacing the file in one step

    The document is written to a temporary file in the same directory and
    moved over the target with ``os.replace``, so readers see either the old
    or the new file, never a partial one.

    Raises:
        StoreWriteError: If the file cannot be written
    """
    path = Path(path)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            dir=path.parent, prefix=f".{path.name}.", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, ensure_ascii=False)
                f.write("\n")
            os.replace(tmp_name, path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise
    except OSError as e:
        logger.error("failed_to_write_json", path=str(path), error=str(e))
        raise StoreWriteError(f"Failed to write {path}: {e}") from e


def _parse_document(document: Any, origin: str) -> CanonicalDataset:
    try:
        return CanonicalDataset.model_validate(document)
    except PydanticValidationError as e:
        raise ValidationError(f"Stored dataset at {origin} is invalid", e.errors()) from e


class DatasetStore(ABC):
    """
    Single-writer repository for the canonical dataset

    ``commit`` accepts the ``last_updated`` stamp of the dataset the caller
    loaded; when given, the write is refused if the stored copy changed in
    the meantime.
    """

    @abstractmethod
    def load(self) -> Optional[CanonicalDataset]:
        """Load the live dataset, or None if nothing is stored yet"""

    @abstractmethod
    def commit(
        self, dataset: CanonicalDataset, expected_last_updated: Optional[str] = None
    ) -> None:
        """Replace the live dataset"""

    @abstractmethod
    def stage_pending(self, dataset: CanonicalDataset) -> None:
        """Keep a merged candidate for human review without publishing it"""

    @abstractmethod
    def load_pending(self) -> Optional[CanonicalDataset]:
        """Load the candidate awaiting review"""

    @abstractmethod
    def discard_pending(self) -> None:
        """Drop the candidate awaiting review"""

    def _check_version(self, expected_last_updated: Optional[str]) -> None:
        if expected_last_updated is None:
            return

        current = self.load()
        current_stamp = current.metadata.last_updated if current else None
        if current_stamp != expected_last_updated:
            logger.error(
                "store_conflict",
                expected=expected_last_updated,
                found=current_stamp,
            )
            raise StoreConflictError(
                "Canonical dataset changed since it was loaded "
                f"(expected {expected_last_updated}, found {current_stamp})"
            )


class JsonFileStore(DatasetStore):
    """Dataset kept as one pretty-printed JSON document on disk"""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self.pending_path = self.path.with_name(f"{self.path.stem}.pending.json")

    def _read(self, path: Path) -> Optional[CanonicalDataset]:
        if not path.exists():
            return None

        try:
            with open(path, "r", encoding="utf-8") as f:
                document = json.load(f)
        except json.JSONDecodeError as e:
            raise ValidationError(f"Stored dataset at {path} is not valid JSON") from e

        return _parse_document(document, str(path))

    def load(self) -> Optional[CanonicalDataset]:
        dataset = self._read(self.path)
        if dataset is None:
            logger.info("no_existing_dataset", path=str(self.path))
        return dataset

    def commit(
        self, dataset: CanonicalDataset, expected_last_updated: Optional[str] = None
    ) -> None:
        self._check_version(expected_last_updated)
        dataset.recount()
        atomic_write_json(self.path, dataset.to_document())
        logger.info(
            "dataset_committed",
            path=str(self.path),
            providers=len(dataset.providers),
            models=dataset.metadata.total_model_count,
        )

    def stage_pending(self, dataset: CanonicalDataset) -> None:
        dataset.recount()
        atomic_write_json(self.pending_path, dataset.to_document())
        logger.info("pending_dataset_staged", path=str(self.pending_path))

    def load_pending(self) -> Optional[CanonicalDataset]:
        return self._read(self.pending_path)

    def discard_pending(self) -> None:
        try:
            self.pending_path.unlink(missing_ok=True)
        except OSError as e:
            raise StoreWriteError(f"Failed to remove {self.pending_path}: {e}") from e


class SupabaseDatasetStore(DatasetStore):
    """
    Dataset kept as a JSON document row in a Supabase table

    Expected table shape: ``name text primary key, document jsonb,
    updated_at timestamptz``. The live dataset and the review candidate are
    two rows keyed by name.
    """

    def __init__(self, client, table: str = "pricing_documents", key: str = "canonical"):
        """
        Initialize store

        Args:
            client: Supabase client (``supabase.create_client``)
            table: Document table name
            key: Row name of the live dataset
        """
        self.client = client
        self.table = table
        self.key = key
        self.pending_key = f"{key}:pending"

    def _get(self, name: str) -> Optional[CanonicalDataset]:
        result = (
            self.client.table(self.table).select("document").eq("name", name).execute()
        )
        if not result.data:
            return None
        return _parse_document(result.data[0]["document"], f"{self.table}/{name}")

    def _put(self, name: str, dataset: CanonicalDataset) -> None:
        dataset.recount()
        row = {
            "name": name,
            "document": dataset.to_document(),
            "updated_at": datetime.now(timezone.utc).isoformat(),
        }
        try:
            self.client.table(self.table).upsert(row, on_conflict="name").execute()
        except Exception as e:
            logger.error("supabase_write_failed", table=self.table, name=name, error=str(e))
            raise StoreWriteError(f"Failed to write {self.table}/{name}: {e}") from e

    def load(self) -> Optional[CanonicalDataset]:
        return self._get(self.key)

    def commit(
        self, dataset: CanonicalDataset, expected_last_updated: Optional[str] = None
    ) -> None:
        self._check_version(expected_last_updated)
        self._put(self.key, dataset)
        logger.info(
            "dataset_committed",
            table=self.table,
            models=dataset.metadata.total_model_count,
        )

    def stage_pending(self, dataset: CanonicalDataset) -> None:
        self._put(self.pending_key, dataset)
        logger.info("pending_dataset_staged", table=self.table)

    def load_pending(self) -> Optional[CanonicalDataset]:
        return self._get(self.pending_key)

    def discard_pending(self) -> None:
        try:
            self.client.table(self.table).delete().eq("name", self.pending_key).execute()
        except Exception as e:
            raise StoreWriteError(f"Failed to discard pending dataset: {e}") from e


def build_store(config) -> DatasetStore:
    """Create the store selected by ``config.store_backend``"""
    if config.store_backend == "supabase":
        if not config.supabase_url or not config.supabase_service_key:
            raise ValidationError(
                "SUPABASE_URL and SUPABASE_SERVICE_KEY are required for the supabase store"
            )

        client = create_client(config.supabase_url, config.supabase_service_key)
        return SupabaseDatasetStore(client, table=config.supabase_table)

    return JsonFileStore(config.data_path)
