# quizdesk_Local_API/app/core/Sync/core.py
# Description: Orchestrates sync passes: push the operation queue, pull remote changes, merge last-write-wins.
#
# Imports
import asyncio
from typing import Iterable, List, Optional, Union
#
# 3rd-party Libraries
from loguru import logger
#
# Local Imports
from quizdesk_Local_API.app.core.AuthNZ.Session_Service import SessionService, UserRole
from quizdesk_Local_API.app.core.DB_Management.Local_Store_DB import (
    InputError,
    LocalStoreDB,
    LocalStoreError,
    get_current_utc_timestamp_iso,
)
from quizdesk_Local_API.app.core.DB_Management.Schema_Utils import SYNCABLE_TABLES
from .conflict import ConflictResolver, LastWriteWinsResolver, Resolution
from .exceptions import (
    RemoteError,
    RemoteRejectedError,
    SyncError,
    SyncInProgressError,
    SyncNotAuthorizedError,
)
from .models import (
    SYSTEM_TRIGGERS,
    RemoteRecord,
    SyncOptions,
    SyncResult,
    SyncStatus,
    SyncTier,
    SyncTrigger,
    tables_in_tier,
)
from .operation_queue import OperationQueue
from .state import SyncStateStore
from .transport import RemoteClient
#
########################################################################################################################
#
# Functions:

DEFAULT_BATCH_SIZE = 50
DEFAULT_COMMITTED_RETENTION_DAYS = 7


class SyncEngine:
    """
    Runs one sync pass at a time against a single remote store.

    A trigger that arrives while a pass is running is rejected with SyncInProgressError.
    Remote calls are the only suspension points; every local read and write happens
    synchronously in short transactions on the calling thread.
    """

    def __init__(self,
                 store: LocalStoreDB,
                 queue: OperationQueue,
                 remote: RemoteClient,
                 session_service: SessionService,
                 resolver: Optional[ConflictResolver] = None,
                 state: Optional[SyncStateStore] = None,
                 batch_size: int = DEFAULT_BATCH_SIZE,
                 committed_retention_days: Optional[int] = DEFAULT_COMMITTED_RETENTION_DAYS):
        """
        Args:
            store: The opened (already migrated) local store.
            queue: Operation queue over the same store.
            remote: RemoteClient implementation.
            session_service: Consulted for manual triggers.
            resolver: Conflict strategy, last-write-wins by default.
            state: Watermark bookkeeping, created over `store` when omitted.
            batch_size: Queue entries drained per round trip of the push loop.
            committed_retention_days: Committed queue entries older than this are purged
                after a push phase; None keeps them forever.
        """
        if not isinstance(store, LocalStoreDB): raise TypeError("store must be a LocalStoreDB object")
        if not isinstance(queue, OperationQueue): raise TypeError("queue must be an OperationQueue object")
        if not isinstance(remote, RemoteClient): raise TypeError("remote must be a RemoteClient object")
        if batch_size <= 0: raise ValueError("batch_size must be positive")

        self.store = store
        self.queue = queue
        self.remote = remote
        self.session_service = session_service
        self.resolver = resolver or LastWriteWinsResolver()
        self.state = state or SyncStateStore(store)
        self.batch_size = batch_size
        self.committed_retention_days = committed_retention_days
        self._lock = asyncio.Lock()
        self._last_result: Optional[SyncResult] = None
        self._last_sync_at: Optional[str] = None
        self._last_error: Optional[str] = None
        logger.info(f"[SyncEngine] Initialized for client_id: {self.store.client_id}")

    @property
    def in_progress(self) -> bool:
        return self._lock.locked()

    @staticmethod
    def resolve_scope(scope: Optional[Iterable[str]]) -> List[str]:
        """Returns the tables in merge order, restricted to `scope` when given."""
        if scope is None:
            return list(SYNCABLE_TABLES)
        requested = set(scope)
        unknown = sorted(requested - set(SYNCABLE_TABLES))
        if unknown:
            raise InputError(f"Unknown tables in sync scope: {unknown}")
        return [table for table in SYNCABLE_TABLES if table in requested]

    def _authorize(self, trigger: SyncTrigger, options: SyncOptions, external: bool):
        if trigger in SYSTEM_TRIGGERS and not external:
            return
        if not self.session_service.is_authenticated():
            raise SyncNotAuthorizedError("A signed-in session is required to start a sync.")
        if options.replace_existing and not self.session_service.has_role(UserRole.ADMIN):
            raise SyncNotAuthorizedError("Only administrators may replace existing local data.")

    async def run_sync(self, trigger: Union[SyncTrigger, str] = SyncTrigger.MANUAL,
                       options: Optional[SyncOptions] = None, external: bool = False) -> SyncResult:
        """
        Runs one full pass: push phase, then pull phase if the push was not interrupted.

        `external` marks a request that arrived from outside the process (the HTTP command
        surface). Those always need a session, whatever trigger kind they report.

        Raises:
            SyncInProgressError: another pass holds the sync lock.
            SyncNotAuthorizedError: a manual or external trigger without the required session.
            InputError: unknown table in `options.scope`.
        """
        trigger = SyncTrigger(trigger)
        options = options or SyncOptions()
        tables = self.resolve_scope(options.scope)
        self._authorize(trigger, options, external)

        # No await between the check and the acquire, so nothing can slip in between.
        if self._lock.locked():
            logger.warning(f"[SyncEngine] Synchronization is already in progress. Rejecting {trigger.value} trigger.")
            raise SyncInProgressError("A sync pass is already in progress.")

        async with self._lock:
            result = SyncResult(trigger=trigger, started_at=get_current_utc_timestamp_iso())
            logger.info(f"[SyncEngine] Starting {trigger.value} sync for tables {tables} "
                        f"(replace_existing={options.replace_existing})")
            try:
                if await self._push_phase(tables, result) and not options.push_only:
                    await self._pull_phase(tables, options, result)
            except Exception as e:
                # A pass must never take the process down; the queue simply stays as it is.
                logger.exception(f"[SyncEngine] Unexpected error during sync: {e}")
                result.add_error(None, f"Unexpected sync error: {e}")
                result.interrupted_by = str(e)
            finally:
                result.finished_at = get_current_utc_timestamp_iso()
                self._last_result = result
                self._last_sync_at = result.finished_at
                self._last_error = result.interrupted_by or (result.errors[-1].reason if result.errors else None)

            logger.info(f"[SyncEngine] Sync finished: pushed={result.pushed} pulled={result.pulled} "
                        f"conflicts={result.conflicts} errors={len(result.errors)}")
            return result

    # --- Push ---
    async def _push_phase(self, tables: List[str], result: SyncResult) -> bool:
        """Returns False when a transient failure stopped the phase."""
        pushed_tables = set()
        while True:
            batch = self.queue.drain(self.batch_size, tables)
            if not batch:
                break
            for op in batch:
                self.queue.mark_in_flight(op.id)
                try:
                    await asyncio.to_thread(self.remote.push, op.table_name, op.type, op.payload, op.id)
                except RemoteRejectedError as e:
                    self.queue.mark_failed(op.id, str(e))
                    result.add_error(op.id, str(e))
                    continue
                except Exception as e:
                    # Timeouts, network errors and anything not tagged as a rejection
                    reason = str(e) if isinstance(e, RemoteError) else f"{type(e).__name__}: {e}"
                    logger.warning(f"[SyncEngine] Transient failure pushing {op.id}; stopping push phase: {reason}")
                    self.queue.release(op.id, reason)
                    result.add_error(op.id, f"Transient remote failure: {reason}")
                    result.interrupted_by = reason
                    self._finish_push(pushed_tables)
                    return False
                self.queue.mark_committed(op.id)
                pushed_tables.add(op.table_name)
                result.pushed += 1
        self._finish_push(pushed_tables)
        return True

    def _finish_push(self, pushed_tables):
        if pushed_tables:
            self.state.record_push(pushed_tables)
        if self.committed_retention_days is not None:
            self.queue.purge_committed(self.committed_retention_days)

    # --- App close ---
    async def flush_on_close(self, timeout_seconds: float) -> Optional[SyncResult]:
        """
        Final push of the critical tier (quiz attempts) before the process exits.

        The WAL is checkpointed first so every local write is in the main database file even
        if the push cannot finish. Returns None when the push was skipped or ran out of time.
        An operation cut off mid-flight stays in flight until `recover_interrupted` resets it
        on the next start.
        """
        try:
            self.store.checkpoint()
        except LocalStoreError as e:
            logger.warning(f"[SyncEngine] WAL checkpoint before app close failed: {e}")
        if timeout_seconds <= 0:
            return None

        options = SyncOptions(scope=frozenset(tables_in_tier(SyncTier.CRITICAL)), push_only=True)
        try:
            return await asyncio.wait_for(self.run_sync(SyncTrigger.APP_CLOSE, options), timeout_seconds)
        except SyncInProgressError:
            logger.warning("[SyncEngine] App-close push skipped: a sync pass is still running.")
        except asyncio.TimeoutError:
            logger.warning(f"[SyncEngine] App-close push did not finish within {timeout_seconds}s; "
                           f"remaining operations stay queued.")
        return None

    # --- Pull ---
    async def _pull_phase(self, tables: List[str], options: SyncOptions, result: SyncResult):
        for table_name in tables:
            since = None if options.replace_existing else self.state.get_watermark(table_name)
            try:
                records = await asyncio.to_thread(self.remote.pull, table_name, since)
            except Exception as e:
                reason = str(e) if isinstance(e, (RemoteError, SyncError)) else f"{type(e).__name__}: {e}"
                logger.warning(f"[SyncEngine] Pull of {table_name} failed; stopping pull phase: {reason}")
                result.add_error(None, f"Pull of {table_name} failed: {reason}")
                result.interrupted_by = reason
                return
            try:
                self.merge_batch(table_name, records, result, replace_existing=options.replace_existing)
            except LocalStoreError as e:
                logger.error(f"[SyncEngine] Merge of {table_name} rolled back: {e}")
                result.add_error(None, f"Merge of {table_name} failed: {e}")
                result.interrupted_by = str(e)
                return

    def merge_batch(self, table_name: str, records: List[RemoteRecord], result: SyncResult,
                    replace_existing: bool = False):
        """
        Merges one pulled batch and advances the table's watermark, all in one transaction.

        Records with an unconfirmed local operation are left alone, and so are parent rows
        whose deletion would cascade into a child with an unconfirmed operation. Applying
        the same batch twice leaves the store in the same state.
        """
        pulled = conflicts = removed = 0
        deferred_at: List[str] = []
        with self.store.transaction() as conn:
            protected = self.queue.pending_record_ids(table_name, conn=conn)
            held_parents = self.queue.protected_parent_ids(table_name, conn=conn)
            for record in records:
                local_row = self.store.get_record(table_name, record.record_id, conn=conn)
                resolution = self.resolver.resolve(local_row, record, record.record_id in protected)
                if (resolution == Resolution.APPLY_REMOTE and record.deleted
                        and record.record_id in held_parents):
                    logger.debug(f"[SyncEngine] Holding tombstone for {table_name}/{record.record_id}: "
                                 f"a child row has an unpushed change.")
                    resolution = Resolution.DEFER
                if resolution == Resolution.APPLY_REMOTE:
                    if record.deleted:
                        self.store.delete_row(table_name, record.record_id, conn=conn)
                    else:
                        self.store.upsert_row(table_name, record.to_row(), conn=conn)
                    pulled += 1
                elif resolution == Resolution.DEFER:
                    conflicts += 1
                    if record.updated_at:
                        deferred_at.append(record.updated_at)
                elif local_row is not None and record.version < int(local_row.get('version') or 0):
                    conflicts += 1

            if replace_existing:
                remote_ids = {r.record_id for r in records if not r.deleted}
                for local_id in self.store.get_record_ids(table_name, conn=conn):
                    if local_id in remote_ids or local_id in protected:
                        continue
                    if local_id in held_parents:
                        logger.info(f"[SyncEngine] Keeping {table_name}/{local_id}: a child row has an unpushed change.")
                        conflicts += 1
                        continue
                    self.store.delete_row(table_name, local_id, conn=conn)
                    removed += 1

            current = self.state.get_watermark(table_name, conn=conn)
            candidates = [ts for ts in [current] + [r.updated_at for r in records] if ts]
            watermark = max(candidates) if candidates else None
            if deferred_at:
                # Pull is inclusive, so stopping at the earliest deferred record fetches it again next pass
                watermark = min(watermark, min(deferred_at))
                if current and watermark < current:
                    watermark = current
            self.state.advance_watermark(table_name, watermark, conn, full_sync=replace_existing)

        result.pulled += pulled
        result.conflicts += conflicts
        logger.info(f"[SyncEngine] Merged {table_name}: received={len(records)} applied={pulled} "
                    f"conflicts={conflicts} removed={removed}")

    # --- Status ---
    def get_status(self) -> SyncStatus:
        return SyncStatus(
            in_progress=self.in_progress,
            last_result=self._last_result,
            last_sync_at=self._last_sync_at,
            last_error=self._last_error,
            queue_counts=self.queue.count_by_status(),
        )

#
# End of core.py
########################################################################################################################
