from __future__ import annotations

import json

from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

import numpy as np

from src.config import GALLERY_FILENAME, GALLERY_SCHEMA_VERSION
from src.face.types import EnrollmentRecord
from src.utils.log import get_logger
from src.utils.math import as_descriptor, l2_normalize

logger = get_logger(__name__)


@dataclass
class GalleryConfig:
    # File name used when save/load is given a directory.
    filename: str = GALLERY_FILENAME
    # Schema version to support future migrations.
    schema_version: str = GALLERY_SCHEMA_VERSION


class Gallery:
    """In-memory enrollment gallery with JSON persistence.

    Holds one normalized descriptor per identity, in enrollment order.
    Re-enrolling an identity replaces its descriptor and moves it to the end,
    like an INSERT OR REPLACE into the embeddings table.

    The matcher never sees the gallery itself, only `snapshot()`.
    """

    def __init__(self, config: Optional[GalleryConfig] = None):
        self.config = config or GalleryConfig()
        self._descriptors: Dict[str, np.ndarray] = {}
        self._created_at: Dict[str, str] = {}

    def __len__(self) -> int:
        return len(self._descriptors)

    def __contains__(self, identity: object) -> bool:
        return identity in self._descriptors

    def identities(self) -> List[str]:
        return list(self._descriptors.keys())

    def get(self, identity: str) -> Optional[np.ndarray]:
        vec = self._descriptors.get(str(identity))
        return None if vec is None else vec.copy()

    def created_at(self, identity: str) -> Optional[str]:
        return self._created_at.get(str(identity))

    def enroll(self, identity: str, descriptor: Any, created_at: Optional[str] = None) -> np.ndarray:
        """Normalize `descriptor` and store it for `identity`. Returns the stored vector."""
        name = str(identity).strip() if identity is not None else ""
        if not name:
            raise ValueError("identity must be a non-empty string")
        vec = as_descriptor(descriptor)
        if vec is None or vec.size == 0:
            raise ValueError(f"descriptor for {name} is empty or not numeric")

        vec = l2_normalize(vec)
        if not np.any(vec):
            logger.warning(f"Enrolling {name} with a zero descriptor; it will never match")

        replaced = self._descriptors.pop(name, None) is not None
        self._created_at.pop(name, None)
        self._descriptors[name] = vec
        self._created_at[name] = created_at or datetime.now(timezone.utc).isoformat()
        logger.info(f"{'Re-enrolled' if replaced else 'Enrolled'} {name} ({vec.shape[0]} dims)")
        return vec.copy()

    def remove(self, identity: str) -> bool:
        name = str(identity)
        if name not in self._descriptors:
            return False
        del self._descriptors[name]
        self._created_at.pop(name, None)
        logger.info(f"Removed {name}")
        return True

    def snapshot(self) -> List[EnrollmentRecord]:
        """Fresh enrollment list for a single match call."""
        return [EnrollmentRecord(identity=name, descriptor=vec.copy()) for name, vec in self._descriptors.items()]

    def _resolve_path(self, path: Path) -> Path:
        path = Path(path)
        if path.is_dir() or not path.suffix:
            return path / self.config.filename
        return path

    def save(self, path: Path) -> Path:
        fp = self._resolve_path(path)
        fp.parent.mkdir(parents=True, exist_ok=True)
        data = {
            "schema_version": self.config.schema_version,
            "records": [
                {
                    "identity": name,
                    "descriptor": [float(x) for x in vec.tolist()],
                    "created_at": self._created_at.get(name),
                }
                for name, vec in self._descriptors.items()
            ],
        }
        with open(fp, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, ensure_ascii=False)
        logger.info(f"Saved {len(self)} enrolled identities to {fp}")
        return fp

    def load(self, path: Path) -> bool:
        """Replace the gallery contents from disk. Returns False if the file does not exist."""
        fp = self._resolve_path(path)
        if not fp.exists():
            return False
        with open(fp, "r", encoding="utf-8") as f:
            data = json.load(f)

        if not isinstance(data, dict) or data.get("schema_version") != self.config.schema_version:
            raise ValueError(f"Unsupported gallery file: {fp}")

        records = data.get("records")
        if records is None:
            records = []
        if not isinstance(records, list):
            raise ValueError(f"Unsupported gallery file: {fp} ('records' must be a list)")

        descriptors: Dict[str, np.ndarray] = {}
        created: Dict[str, str] = {}
        for rec in records:
            if not isinstance(rec, dict):
                logger.warning(f"Skipping malformed gallery record in {fp}: {type(rec).__name__}")
                continue
            name = str(rec.get("identity", "")).strip()
            vec = as_descriptor(rec.get("descriptor"))
            if not name or vec is None or vec.size == 0:
                logger.warning(f"Skipping malformed gallery record in {fp}: {name or '<no identity>'}")
                continue
            # Hand-edited files may carry raw descriptors.
            descriptors.pop(name, None)
            descriptors[name] = l2_normalize(vec)
            if rec.get("created_at"):
                created[name] = str(rec["created_at"])

        self._descriptors = descriptors
        self._created_at = created
        logger.info(f"Loaded {len(self)} enrolled identities from {fp}")
        return True
