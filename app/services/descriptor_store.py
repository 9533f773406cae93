import json
import os
import tempfile
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import numpy as np
from qdrant_client import QdrantClient
from qdrant_client.http import models as qm

from app.core.descriptor import as_descriptor
from app.utils.logger import log

_EPOCH = datetime.fromtimestamp(0, tz=timezone.utc)


class DescriptorStoreError(Exception):
    """Raised when the reference descriptor cannot be read or written."""


class DescriptorNotFoundError(DescriptorStoreError):
    """Raised by ``load`` when no face has been enrolled yet."""


def _frozen(values) -> np.ndarray:
    descriptor = as_descriptor(values).copy()
    descriptor.setflags(write=False)
    return descriptor


@dataclass(frozen=True)
class ReferenceRecord:
    """The single enrolled reference face."""

    descriptor: np.ndarray
    enrolled_at: datetime
    crop_path: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "descriptor": [float(v) for v in self.descriptor],
            "enrolled_at": self.enrolled_at.isoformat(),
            "crop_path": self.crop_path,
        }

    @classmethod
    def from_dict(cls, data) -> "ReferenceRecord":
        # Older deployments stored a bare JSON array of floats
        if isinstance(data, list):
            return cls(descriptor=_frozen(data), enrolled_at=_EPOCH)
        if not isinstance(data, dict):
            raise TypeError(f"Expected a JSON object, got {type(data).__name__}")
        enrolled_at = data.get("enrolled_at")
        return cls(
            descriptor=_frozen(data["descriptor"]),
            enrolled_at=datetime.fromisoformat(enrolled_at) if enrolled_at else _EPOCH,
            crop_path=data.get("crop_path"),
        )


class DescriptorStore(ABC):
    """Single-slot holder of the reference descriptor.

    ``save`` replaces any previous value. Concurrent saves are serialized and a
    ``load`` running alongside a ``save`` sees either the old or the new record
    in full. File and in-memory loads take no lock.
    """

    def __init__(self):
        self._write_lock = threading.RLock()

    def save(self, descriptor, crop_path: Optional[str] = None) -> ReferenceRecord:
        """Persist ``descriptor`` as the new reference and return the stored record.

        Raises:
            ValueError: If ``descriptor`` is not a valid face descriptor.
            DescriptorStoreError: If the backend write fails.
        """
        record = ReferenceRecord(
            descriptor=_frozen(descriptor),
            enrolled_at=datetime.now(timezone.utc),
            crop_path=crop_path,
        )
        with self._write_lock:
            self._replace(record)
        return record

    @abstractmethod
    def load(self) -> ReferenceRecord:
        """Return the current reference or raise ``DescriptorNotFoundError``."""

    def attach_crop(
        self, enrolled_at: datetime, crop_path: str
    ) -> Optional[ReferenceRecord]:
        """Record the crop location on the reference enrolled at ``enrolled_at``.

        Returns None without writing when a newer enrollment has replaced it.
        """
        with self._write_lock:
            try:
                current = self.load()
            except DescriptorNotFoundError:
                return None
            if current.enrolled_at != enrolled_at:
                return None
            record = ReferenceRecord(
                descriptor=current.descriptor,
                enrolled_at=current.enrolled_at,
                crop_path=crop_path,
            )
            self._replace(record)
            return record

    @abstractmethod
    def _replace(self, record: ReferenceRecord) -> None:
        """Write ``record`` over the slot. Callers hold ``self._write_lock``."""


class InMemoryDescriptorStore(DescriptorStore):
    """Process-local store, used for tests and ephemeral deployments."""

    def __init__(self):
        super().__init__()
        self._record: Optional[ReferenceRecord] = None

    def load(self) -> ReferenceRecord:
        # Records are immutable and swapped whole, so reading needs no lock
        record = self._record
        if record is None:
            raise DescriptorNotFoundError("No reference descriptor enrolled")
        return record

    def _replace(self, record: ReferenceRecord) -> None:
        self._record = record


class FileDescriptorStore(DescriptorStore):
    """JSON file store with write-to-temp-then-rename atomic replacement."""

    def __init__(self, directory: str, filename: str = "descriptor.json"):
        super().__init__()
        self.directory = Path(directory)
        self.path = self.directory / filename

    def load(self) -> ReferenceRecord:
        try:
            with open(self.path, "r", encoding="utf-8") as fh:
                data = json.load(fh)
        except FileNotFoundError:
            raise DescriptorNotFoundError(f"No reference descriptor at {self.path}")
        except (OSError, json.JSONDecodeError) as e:
            raise DescriptorStoreError(f"Failed to read {self.path}: {e}") from e

        try:
            return ReferenceRecord.from_dict(data)
        except (KeyError, TypeError, ValueError) as e:
            raise DescriptorStoreError(
                f"Corrupt reference record in {self.path}: {e}"
            ) from e

    def _replace(self, record: ReferenceRecord) -> None:
        tmp_path = None
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(
                dir=self.directory, prefix=".descriptor-", suffix=".tmp"
            )
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(record.to_dict(), fh)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp_path, self.path)
            tmp_path = None
            self._fsync_directory()
        except OSError as e:
            raise DescriptorStoreError(f"Failed to write {self.path}: {e}") from e
        finally:
            if tmp_path is not None and os.path.exists(tmp_path):
                os.unlink(tmp_path)
        log.bug(f"Reference descriptor written to {self.path}")

    def _fsync_directory(self) -> None:
        # Persists the rename itself; not every platform can open a directory
        if not hasattr(os, "O_DIRECTORY"):
            return
        fd = os.open(self.directory, os.O_RDONLY | os.O_DIRECTORY)
        try:
            os.fsync(fd)
        finally:
            os.close(fd)


class QdrantDescriptorStore(DescriptorStore):
    """Keeps the reference as the only point of a dedicated Qdrant collection."""

    POINT_ID = 1

    def __init__(self, client: QdrantClient, collection_name: str):
        super().__init__()
        self.client = client
        self.collection_name = collection_name

    def _ensure_collection(self, vector_size: int) -> None:
        if self.client.collection_exists(self.collection_name):
            info = self.client.get_collection(self.collection_name)
            current_size = info.config.params.vectors.size
            if current_size == vector_size:
                return
            # Only one reference exists, so a dimension change drops the old one
            log.warn(
                f"Recreating collection {self.collection_name}: "
                f"vector size {current_size} -> {vector_size}"
            )
            self.client.delete_collection(self.collection_name)

        self.client.create_collection(
            collection_name=self.collection_name,
            vectors_config=qm.VectorParams(size=vector_size, distance=qm.Distance.EUCLID),
        )
        log.info(
            f"Created Qdrant collection {self.collection_name} with vector size {vector_size}"
        )

    def load(self) -> ReferenceRecord:
        # A dimension change drops the collection before recreating it, so
        # reads wait for in-flight writes here
        with self._write_lock:
            return self._load()

    def _load(self) -> ReferenceRecord:
        try:
            if not self.client.collection_exists(self.collection_name):
                raise DescriptorNotFoundError("No reference collection")
            points = self.client.retrieve(
                collection_name=self.collection_name,
                ids=[self.POINT_ID],
                with_payload=True,
                with_vectors=True,
            )
        except DescriptorStoreError:
            raise
        except Exception as e:
            log.exception(e, "loading reference descriptor from Qdrant")
            raise DescriptorStoreError(f"Qdrant retrieve failed: {e}") from e

        if not points:
            raise DescriptorNotFoundError("No reference descriptor enrolled")

        point = points[0]
        payload = dict(point.payload or {})
        payload["descriptor"] = point.vector
        try:
            return ReferenceRecord.from_dict(payload)
        except (KeyError, TypeError, ValueError) as e:
            raise DescriptorStoreError(f"Corrupt reference point: {e}") from e

    def _replace(self, record: ReferenceRecord) -> None:
        data = record.to_dict()
        vector = data.pop("descriptor")
        try:
            self._ensure_collection(len(vector))
            self.client.upsert(
                collection_name=self.collection_name,
                points=[qm.PointStruct(id=self.POINT_ID, vector=vector, payload=data)],
                wait=True,
            )
        except Exception as e:
            log.exception(e, "saving reference descriptor to Qdrant")
            raise DescriptorStoreError(f"Qdrant upsert failed: {e}") from e
