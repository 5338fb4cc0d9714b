"""
Landing store interface.

The landing store is external: the engine lists and reads objects but
never writes or deletes them.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import BinaryIO

from pydantic import BaseModel


class LandedObject(BaseModel):
    """
    Handle to one object in the landing store.

    Attributes:
        dataset: Dataset the object was landed for
        path: Store path (unique per object)
        modified_at: Last modification time
        size_bytes: Object size
    """

    dataset: str
    path: str
    modified_at: datetime
    size_bytes: int = 0

    class Config:
        frozen = True


class LandingStore(ABC):
    """Abstract read-only access to landed raw files."""

    @abstractmethod
    def list_new_objects(self, dataset: str, since: datetime | None) -> list[LandedObject]:
        """
        List objects for a dataset modified at or after `since`, oldest first.

        Args:
            dataset: Dataset name
            since: Lower bound (inclusive); None lists everything
        """

    @abstractmethod
    def read(self, handle: LandedObject) -> BinaryIO:
        """
        Open an object for reading.

        Raises:
            OSError: If the object cannot be opened
        """
