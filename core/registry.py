# ============================================================
# Lithia - Interactive SQL Console
# core/registry.py - Connection Registry (worker-owned)
# ============================================================

from typing import Dict, Iterator, List, Optional, Tuple

from loguru import logger

from core.drivers import PoolHandle
from core.state import DbStatus
from utils.helpers import mask_uri


class ConnectionRegistry:
    """
    Maps connection-string keys to opened handles.

    Only the database worker touches this, so it has no lock. Entries keep
    insertion order, which is also the order reported to the console.
    """

    def __init__(self):
        self._handles: Dict[str, PoolHandle] = {}

    def get(self, uri: str) -> Optional[PoolHandle]:
        return self._handles.get(uri)

    def insert(self, uri: str, handle: PoolHandle) -> None:
        previous = self._handles.get(uri)
        if previous is not None and previous is not handle:
            logger.info(f"Replacing existing handle for {mask_uri(uri)}")
            previous.close()
        # Reconnecting keeps the key's original position
        self._handles[uri] = handle

    def remove(self, uri: str) -> bool:
        """Close and drop the handle for uri. Returns False if it was not registered."""
        handle = self._handles.pop(uri, None)
        if handle is None:
            return False
        handle.close()
        logger.info(f"Removed connection {mask_uri(uri)}")
        return True

    def status_of(self, uri: str) -> DbStatus:
        handle = self._handles.get(uri)
        if handle is not None and handle.is_usable():
            return DbStatus.CONNECTED
        return DbStatus.DISCONNECTED

    def snapshot_statuses(self) -> List[Tuple[str, DbStatus]]:
        return [(uri, self.status_of(uri)) for uri in self._handles]

    def close_all(self) -> None:
        for uri in list(self._handles):
            self.remove(uri)

    def __contains__(self, uri: object) -> bool:
        return uri in self._handles

    def __len__(self) -> int:
        return len(self._handles)

    def __iter__(self) -> Iterator[str]:
        return iter(self._handles)
