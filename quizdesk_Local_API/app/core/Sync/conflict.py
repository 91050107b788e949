# quizdesk_Local_API/app/core/Sync/conflict.py
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Dict, Optional

from loguru import logger

from .models import RemoteRecord


class Resolution(str, Enum):
    APPLY_REMOTE = "apply_remote"
    KEEP_LOCAL = "keep_local"
    # Local row has an unconfirmed outbound change; revisit after it is pushed
    DEFER = "defer"


class ConflictResolver(ABC):
    """Abstract base class for conflict resolution strategies."""

    @abstractmethod
    def resolve(self, local_row: Optional[Dict[str, Any]], remote: RemoteRecord,
                has_pending_local_change: bool = False) -> Resolution:
        """
        Decides what happens to one incoming remote record.

        Args:
            local_row: Current local row as a dict, or None if the record does not exist locally.
            remote: The incoming record.
            has_pending_local_change: True when the record has a queued, unconfirmed local operation.
        """
        pass


def _local_version(local_row: Dict[str, Any]) -> int:
    try:
        return int(local_row.get('version') or 0)
    except (TypeError, ValueError):
        logger.warning(f"Non-numeric local version {local_row.get('version')!r} for {local_row.get('id')}; treating as 0.")
        return 0


class LastWriteWinsResolver(ConflictResolver):
    """Whole-record last-write-wins on the version counter. Ties and unconfirmed local writes keep local."""

    def resolve(self, local_row: Optional[Dict[str, Any]], remote: RemoteRecord,
                has_pending_local_change: bool = False) -> Resolution:
        if has_pending_local_change:
            logger.debug(f"Conflict resolution ({remote.table_name}/{remote.record_id}): local change pending. Outcome: Defer.")
            return Resolution.DEFER

        if local_row is None:
            if remote.deleted:
                # Nothing to delete
                return Resolution.KEEP_LOCAL
            return Resolution.APPLY_REMOTE

        local_version = _local_version(local_row)
        if remote.version > local_version:
            logger.debug(f"Conflict resolution ({remote.table_name}/{remote.record_id}): "
                         f"remote v{remote.version} > local v{local_version}. Outcome: Apply Remote.")
            return Resolution.APPLY_REMOTE
        logger.debug(f"Conflict resolution ({remote.table_name}/{remote.record_id}): "
                     f"remote v{remote.version} <= local v{local_version}. Outcome: Keep Local.")
        return Resolution.KEEP_LOCAL
