# test_sync_properties.py
# Description: Property-based tests for conflict resolution, queue ordering and merge idempotence.
#
# Imports
import tempfile
from pathlib import Path
#
# 3rd-party Libraries
from hypothesis import HealthCheck, given, settings, strategies as st
#
# Local Imports
from quizdesk_Local_API.app.core.AuthNZ.Session_Service import SessionService
from quizdesk_Local_API.app.core.DB_Management.Local_Store_DB import open_local_store
from quizdesk_Local_API.app.core.Sync.conflict import LastWriteWinsResolver, Resolution
from quizdesk_Local_API.app.core.Sync.core import SyncEngine
from quizdesk_Local_API.app.core.Sync.models import RemoteRecord, SyncResult
from quizdesk_Local_API.app.core.Sync.operation_queue import OperationQueue
from quizdesk_Local_API.tests.test_utils import FakeRemoteClient, make_subject_row, subject_insert_data
#
#######################################################################################################################
#
# Strategies

versions = st.integers(min_value=0, max_value=1000)
record_ids = st.sampled_from(["r-1", "r-2", "r-3"])
timestamps = st.integers(min_value=1, max_value=28).map(lambda day: f"2024-02-{day:02d}T12:00:00.000Z")


class TempStore:
    """Fresh migrated store per hypothesis example (function fixtures are not reset between examples)."""

    def __enter__(self):
        self._dir = tempfile.TemporaryDirectory()
        self.store = open_local_store(Path(self._dir.name) / "prop.db", "prop-client")
        self.queue = OperationQueue(self.store)
        self.engine = SyncEngine(self.store, self.queue, FakeRemoteClient(), SessionService())
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.store.close_all_connections()
        self._dir.cleanup()
        return False


#
#######################################################################################################################
#
# Tests


@given(local_version=versions, remote_version=versions, pending=st.booleans())
def test_resolution_follows_version_order(local_version, remote_version, pending):
    remote = RemoteRecord(table_name="subjects", record_id="r-1", version=remote_version)
    outcome = LastWriteWinsResolver().resolve({"id": "r-1", "version": local_version}, remote, pending)

    if pending:
        assert outcome == Resolution.DEFER
    elif remote_version > local_version:
        assert outcome == Resolution.APPLY_REMOTE
    else:
        assert outcome == Resolution.KEEP_LOCAL


@settings(max_examples=25, deadline=None, suppress_health_check=[HealthCheck.too_slow])
@given(edits=st.lists(record_ids, min_size=1, max_size=12))
def test_drain_preserves_per_record_order(edits):
    with TempStore() as env:
        expected = []
        created = set()
        for record_id in edits:
            if record_id in created:
                op = env.queue.record_local_change("update", "subjects", record_id, {"name": f"edit {len(expected)}"})
            else:
                op = env.queue.record_local_change("insert", "subjects", record_id, subject_insert_data())
                created.add(record_id)
            expected.append(op.id)

        assert [op.id for op in env.queue.drain(100)] == expected
        for record_id in created:
            record_versions = [op.payload["version"] for op in env.queue.list_operations(record_id=record_id)]
            assert record_versions == sorted(record_versions)


@settings(max_examples=25, deadline=None, suppress_health_check=[HealthCheck.too_slow])
@given(batch=st.lists(st.tuples(record_ids, st.integers(min_value=1, max_value=9), timestamps, st.booleans()),
                      max_size=8))
def test_merging_a_batch_twice_is_idempotent(batch):
    records = [
        RemoteRecord(table_name="subjects", record_id=record_id, version=version, updated_at=ts, deleted=deleted,
                     data=make_subject_row(subject_id=record_id, version=version, updated_at=ts,
                                           subject_code=f"CODE-{record_id}"))
        for record_id, version, ts, deleted in batch
    ]
    with TempStore() as env:
        env.engine.merge_batch("subjects", records, SyncResult())
        first_rows = env.store.get_records("subjects")
        first_watermark = env.engine.state.get_watermark("subjects")

        env.engine.merge_batch("subjects", records, SyncResult())

        assert env.store.get_records("subjects") == first_rows
        assert env.engine.state.get_watermark("subjects") == first_watermark

#
# End of test_sync_properties.py
#######################################################################################################################
