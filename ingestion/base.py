"""
Abstract record source
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List


class RecordSource(ABC):
    """
    Port for the remote document store.

    A source returns the full snapshot of a path as a list of records.
    Each record is a dict; the child key it was stored under is carried
    as `firebase_key`.
    """

    @abstractmethod
    async def fetch(self, path: str) -> List[Dict[str, Any]]:
        """
        Fetch all records stored under a path.

        Args:
            path: Document store path, e.g. "Retailer_Products"

        Returns:
            List of records; an empty path yields an empty list

        Raises:
            SourceFetchError: If the snapshot cannot be retrieved
        """

    async def close(self):
        """Release transport resources (no-op by default)"""
