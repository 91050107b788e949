# test_remote_client.py
# Description: Tests for HttpRemoteClient with the requests session mocked out.
#
# Imports
import json
from unittest.mock import MagicMock
#
# 3rd-party Libraries
import pytest
import requests
#
# Local Imports
from quizdesk_Local_API.app.core.Sync.exceptions import RemoteRejectedError, RemoteTransientError
from quizdesk_Local_API.app.core.Sync.models import OperationType
from quizdesk_Local_API.app.core.Sync.transport import HttpRemoteClient, OfflineRemoteClient
#
#######################################################################################################################
#
# Helpers


def make_response(status_code=200, body=None, text=None):
    response = requests.Response()
    response.status_code = status_code
    if text is not None:
        response._content = text.encode("utf-8")
    else:
        response._content = json.dumps(body if body is not None else {}).encode("utf-8")
    response.reason = "Test"
    return response


@pytest.fixture
def client():
    remote = HttpRemoteClient("https://sync.example.test/api", api_key="secret-key", timeout=5)
    remote.session = MagicMock()
    yield remote


#
#######################################################################################################################
#
# Tests


class TestPush:

    def test_push_sends_record_with_idempotency_key(self, client):
        client.session.post.return_value = make_response(200, {"ok": True})

        client.push("subjects", OperationType.INSERT, {"id": "s-1", "name": "Physics"}, operation_id="op-1")

        args, kwargs = client.session.post.call_args
        assert args[0] == "https://sync.example.test/api/sync/subjects"
        assert kwargs["headers"]["Idempotency-Key"] == "op-1"
        assert kwargs["headers"]["Authorization"] == "Bearer secret-key"
        assert kwargs["timeout"] == 5
        assert json.loads(kwargs["data"]) == {
            "type": "insert", "record": {"id": "s-1", "name": "Physics"}, "operation_id": "op-1",
        }

    @pytest.mark.parametrize("status_code", [400, 409, 422])
    def test_validation_statuses_are_rejections(self, client, status_code):
        client.session.post.return_value = make_response(status_code, text="bad record")
        with pytest.raises(RemoteRejectedError) as exc_info:
            client.push("subjects", OperationType.UPDATE, {"id": "s-1"}, operation_id="op-1")
        assert exc_info.value.status_code == status_code

    @pytest.mark.parametrize("status_code", [401, 429, 500, 503])
    def test_other_error_statuses_are_transient(self, client, status_code):
        client.session.post.return_value = make_response(status_code, text="try later")
        with pytest.raises(RemoteTransientError):
            client.push("subjects", OperationType.UPDATE, {"id": "s-1"}, operation_id="op-1")

    @pytest.mark.parametrize("error", [
        requests.exceptions.Timeout("slow"),
        requests.exceptions.ConnectionError("refused"),
    ])
    def test_network_errors_are_transient(self, client, error):
        client.session.post.side_effect = error
        with pytest.raises(RemoteTransientError):
            client.push("subjects", OperationType.DELETE, {"id": "s-1"}, operation_id="op-1")


class TestPull:

    def test_pull_parses_list_and_passes_watermark(self, client):
        client.session.get.return_value = make_response(200, [
            {"id": "s-1", "version": 2, "updated_at": "2024-06-01T10:00:00.000Z", "name": "Physics"},
        ])

        records = client.pull("subjects", "2024-05-01T00:00:00.000Z")

        _, kwargs = client.session.get.call_args
        assert kwargs["params"] == {"since": "2024-05-01T00:00:00.000Z"}
        assert len(records) == 1
        assert records[0].record_id == "s-1"
        assert records[0].version == 2
        assert records[0].data["name"] == "Physics"

    def test_pull_accepts_records_envelope(self, client):
        client.session.get.return_value = make_response(200, {"records": [
            {"id": "s-1", "version": 1, "deleted": True, "data": {"id": "s-1"}},
        ]})
        records = client.pull("subjects", None)
        _, kwargs = client.session.get.call_args
        assert kwargs["params"] == {}
        assert records[0].deleted is True

    def test_pull_error_status_is_transient(self, client):
        client.session.get.return_value = make_response(422, text="no")
        with pytest.raises(RemoteTransientError):
            client.pull("subjects", None)

    def test_invalid_json_is_transient(self, client):
        client.session.get.return_value = make_response(200, text="<html>oops</html>")
        with pytest.raises(RemoteTransientError):
            client.pull("subjects", None)

    def test_malformed_record_fails_whole_batch(self, client):
        client.session.get.return_value = make_response(200, [
            {"id": "s-1", "version": 1},
            {"id": "s-2"},
        ])
        with pytest.raises(RemoteTransientError, match="Malformed record"):
            client.pull("subjects", None)

    def test_network_error_is_transient(self, client):
        client.session.get.side_effect = requests.exceptions.ConnectionError("down")
        with pytest.raises(RemoteTransientError):
            client.pull("subjects", None)


class TestConstructionAndOffline:

    def test_base_url_required(self):
        with pytest.raises(ValueError):
            HttpRemoteClient("")

    def test_trailing_slash_added(self):
        remote = HttpRemoteClient("http://localhost:9000")
        try:
            assert remote.base_url == "http://localhost:9000/"
        finally:
            remote.close()

    def test_offline_client_always_transient(self):
        offline = OfflineRemoteClient()
        with pytest.raises(RemoteTransientError):
            offline.push("subjects", OperationType.INSERT, {"id": "s-1"})
        with pytest.raises(RemoteTransientError):
            offline.pull("subjects", None)

#
# End of test_remote_client.py
#######################################################################################################################
