"""
Filesystem landing store: <root>/<dataset>/<file>.
"""

from datetime import datetime, timezone
from pathlib import Path
from typing import BinaryIO

from policy_warehouse.observability.logger import get_logger

from .base import LandedObject, LandingStore

logger = get_logger(__name__)


class LocalLandingStore(LandingStore):
    """
    Landing store over a local directory tree.

    Each dataset has its own sub-directory; every regular file whose suffix
    is in `suffixes` is a landed object.
    """

    def __init__(self, root: str | Path, suffixes: tuple[str, ...] = (".csv", ".txt")):
        self.root = Path(root)
        self.suffixes = suffixes

    def list_new_objects(self, dataset: str, since: datetime | None) -> list[LandedObject]:
        directory = self.root / dataset
        if not directory.is_dir():
            logger.info(f"No landing directory for dataset '{dataset}': {directory}")
            return []

        objects = []
        for path in directory.iterdir():
            if not path.is_file() or path.suffix.lower() not in self.suffixes:
                continue
            stat = path.stat()
            modified_at = datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc)
            if since is not None and modified_at < since:
                continue
            objects.append(
                LandedObject(
                    dataset=dataset,
                    path=str(path),
                    modified_at=modified_at,
                    size_bytes=stat.st_size,
                )
            )

        objects.sort(key=lambda obj: (obj.modified_at, obj.path))
        return objects

    def read(self, handle: LandedObject) -> BinaryIO:
        return open(handle.path, "rb")
