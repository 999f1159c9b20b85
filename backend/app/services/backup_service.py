"""
NoteMind Backend — Backup / Rollback Manager
==============================================

What:  Short-lived snapshots of a note's summary and tags, taken right before
       an AI operation overwrites them, plus helpers to put them back.
Why:   An AI run that fails halfway (or succeeds with a result the user does
       not want) must not cost the user their previous summary/tags.
How:   A dict of DataBackup keyed by "{note_id}_{kind}_{epoch_millis}",
       guarded by a lock. Snapshots are deep copies. Entries older than the
       expiry (1 hour) are dropped lazily on every read and write.

Failure semantics:
    Nothing here raises on a miss. A missing or expired backup is None/False
    and the caller decides whether to tell the user.
"""

import copy
import inspect
import logging
import threading
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

from app.config import settings
from app.schemas.ai import BackupData, BackupKind, DataBackup

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class BackupManager:
    """
    Thread-safe in-memory backup store with lazy expiry.

    The clock is injectable so expiry can be tested without sleeping.
    """

    def __init__(self, expiry_seconds: Optional[int] = None, clock: Clock = _utcnow):
        self.expiry = timedelta(
            seconds=expiry_seconds if expiry_seconds is not None else settings.backup_expiry_seconds
        )
        self._clock = clock
        self._backups: Dict[str, DataBackup] = {}
        self._lock = threading.Lock()
        self._last_millis = 0

    def __len__(self) -> int:
        with self._lock:
            self._sweep(self._clock())
            return len(self._backups)

    def __contains__(self, backup_id: object) -> bool:
        with self._lock:
            return backup_id in self._backups

    def _is_expired(self, backup: DataBackup, now: datetime) -> bool:
        return now - backup.timestamp > self.expiry

    def _sweep(self, now: datetime) -> int:
        # Caller holds the lock
        expired = [bid for bid, b in self._backups.items() if self._is_expired(b, now)]
        for bid in expired:
            del self._backups[bid]
        return len(expired)

    def _next_millis(self, now: datetime) -> int:
        # Strictly increasing, so two backups in the same millisecond get distinct ids
        millis = max(int(now.timestamp() * 1000), self._last_millis + 1)
        self._last_millis = millis
        return millis

    def create_backup(
        self,
        note_id: str,
        data: Union[BackupData, Mapping[str, Any]],
        kind: Union[BackupKind, str] = BackupKind.BOTH,
    ) -> str:
        """
        Snapshot `data` and return the backup id.

        Later changes to the caller's `data` object do not reach the snapshot.
        """
        kind = BackupKind(kind)
        if isinstance(data, BackupData):
            snapshot = data.model_copy(deep=True)
        else:
            snapshot = BackupData.model_validate(copy.deepcopy(dict(data)))

        with self._lock:
            now = self._clock()
            self._sweep(now)
            backup_id = f"{note_id}_{kind.value}_{self._next_millis(now)}"
            self._backups[backup_id] = DataBackup(
                id=backup_id,
                timestamp=now,
                data=snapshot,
                kind=kind,
            )

        logger.debug("Created %s backup %s", kind.value, backup_id)
        return backup_id

    def get_backup(self, backup_id: str) -> Optional[DataBackup]:
        with self._lock:
            backup = self._backups.get(backup_id)
            if backup is None:
                return None
            if self._is_expired(backup, self._clock()):
                del self._backups[backup_id]
                logger.debug("Backup %s expired", backup_id)
                return None
            return backup.model_copy(deep=True)

    def restore_backup(self, backup_id: str) -> bool:
        """
        True when the backup exists and is fresh. Application state is not
        touched; the caller applies `get_backup(...).data` itself.
        """
        return self.get_backup(backup_id) is not None

    def clear_backup(self, backup_id: str) -> None:
        with self._lock:
            self._backups.pop(backup_id, None)

    def clear_expired_backups(self) -> int:
        with self._lock:
            removed = self._sweep(self._clock())
        if removed:
            logger.info("Removed %d expired backups", removed)
        return removed


backup_manager = BackupManager()


# ── Helpers ───────────────────────────────────────────────────────────────

def backup_before_ai_processing(
    note_id: str,
    summary: Optional[str],
    tags: List[str],
    manager: Optional[BackupManager] = None,
) -> str:
    """Snapshot both summary and tags ahead of an AI run."""
    manager = manager or backup_manager
    return manager.create_backup(note_id, {"summary": summary, "tags": tags}, BackupKind.BOTH)


async def _apply(setter: Callable[[Any], Any], value: Any) -> None:
    result = setter(value)
    if inspect.isawaitable(result):
        await result


async def rollback_on_failure(
    backup_id: str,
    apply_summary: Callable[[Optional[str]], Any],
    apply_tags: Callable[[List[str]], Any],
    manager: Optional[BackupManager] = None,
) -> bool:
    """
    Put a snapshot back through the caller's setters (plain or async).

    Returns False if the backup is gone or a setter fails. The backup is
    left in place either way; clearing it is the caller's call.
    """
    manager = manager or backup_manager
    backup = manager.get_backup(backup_id)
    if backup is None:
        logger.warning("Rollback requested for missing or expired backup %s", backup_id)
        return False

    try:
        if backup.kind in (BackupKind.SUMMARY, BackupKind.BOTH):
            await _apply(apply_summary, backup.data.summary)
        if backup.kind in (BackupKind.TAGS, BackupKind.BOTH):
            await _apply(apply_tags, list(backup.data.tags))
    except Exception:
        logger.error("Rollback from backup %s failed", backup_id, exc_info=True)
        return False

    logger.info("Rolled back from backup %s", backup_id)
    return True
