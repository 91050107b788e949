# quizdesk_Local_API/app/core/Sync/transport.py
import json
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import requests
from loguru import logger

from .exceptions import RemoteRejectedError, RemoteTransientError
from .models import OperationType, RemoteRecord

# Statuses the remote store uses to say "this payload is invalid, do not resend it"
REJECTION_STATUS_CODES = frozenset({400, 409, 422})


class RemoteClient(ABC):
    """Interface to the remote authoritative store. Implementations make blocking calls."""

    @abstractmethod
    def push(self, table_name: str, op_type: OperationType, payload: Dict[str, Any],
             operation_id: Optional[str] = None) -> None:
        """
        Applies one mutation remotely.

        `operation_id` lets the remote recognise a resend of an operation it already
        applied (for example after a crash mid-send) and acknowledge it without
        applying it twice.

        Raises:
            RemoteRejectedError: the remote refused the payload as invalid.
            RemoteTransientError: anything else (network, timeout, server error).
        """
        pass

    @abstractmethod
    def pull(self, table_name: str, since_watermark: Optional[str]) -> List[RemoteRecord]:
        """
        Returns remote records of `table_name` changed at or after `since_watermark`
        (all records when it is None).

        Raises:
            RemoteTransientError: if fetching fails for any reason.
        """
        pass


class HttpRemoteClient(RemoteClient):
    """RemoteClient over the remote store's HTTP sync API."""

    def __init__(self, base_url: str, api_key: Optional[str] = None, timeout: float = 30):
        if not base_url:
            raise ValueError("base_url cannot be empty")
        if not base_url.endswith('/'):
            base_url += '/'
        self.base_url = base_url
        self.api_key = api_key
        self.timeout = timeout
        self.session = requests.Session()
        logger.info(f"HTTP remote client initialized for URL: {self.base_url}")

    def _get_headers(self, operation_id: Optional[str] = None) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        if operation_id:
            headers["Idempotency-Key"] = operation_id
        return headers

    @staticmethod
    def _raise_for_status(response: requests.Response, action: str):
        if response.status_code < 400:
            return
        detail = response.text[:300] if response.text else response.reason
        if response.status_code in REJECTION_STATUS_CODES:
            raise RemoteRejectedError(f"Remote rejected {action}: {detail}", status_code=response.status_code)
        raise RemoteTransientError(f"Remote error during {action}: {detail}", status_code=response.status_code)

    def push(self, table_name: str, op_type: OperationType, payload: Dict[str, Any],
             operation_id: Optional[str] = None) -> None:
        push_url = f"{self.base_url}sync/{table_name}"
        body = {"type": OperationType(op_type).value, "record": payload, "operation_id": operation_id}
        logger.debug(f"Pushing {body['type']} for {table_name}/{payload.get('id')} to {push_url}")
        try:
            response = self.session.post(push_url, data=json.dumps(body, default=str),
                                         headers=self._get_headers(operation_id), timeout=self.timeout)
        except requests.exceptions.Timeout as e:
            raise RemoteTransientError(f"Timed out pushing to {push_url}: {e}") from e
        except requests.exceptions.RequestException as e:
            raise RemoteTransientError(f"HTTP request failed during push: {e}") from e
        self._raise_for_status(response, f"push of {table_name}/{payload.get('id')}")

    def pull(self, table_name: str, since_watermark: Optional[str]) -> List[RemoteRecord]:
        pull_url = f"{self.base_url}sync/{table_name}"
        params = {"since": since_watermark} if since_watermark else {}
        logger.debug(f"Pulling {table_name} from {pull_url} with params: {params}")
        try:
            response = self.session.get(pull_url, params=params, headers=self._get_headers(), timeout=self.timeout)
        except requests.exceptions.Timeout as e:
            raise RemoteTransientError(f"Timed out pulling {table_name}: {e}") from e
        except requests.exceptions.RequestException as e:
            raise RemoteTransientError(f"HTTP request failed during pull: {e}") from e
        if response.status_code >= 400:
            # A refused pull cannot be "not retried"; it stalls this table until the next trigger.
            detail = response.text[:300] if response.text else response.reason
            raise RemoteTransientError(f"Remote error during pull of {table_name}: {detail}",
                                       status_code=response.status_code)

        try:
            raw = response.json()
        except ValueError as e:
            raise RemoteTransientError(f"Invalid JSON response received for {table_name}: {e}") from e
        if isinstance(raw, dict):
            raw = raw.get("records")
        if not isinstance(raw, list):
            raise RemoteTransientError(f"Invalid pull response for {table_name}: expected a list of records")

        records = []
        for item in raw:
            try:
                records.append(RemoteRecord.from_dict(table_name, item))
            except (ValueError, TypeError) as e:
                # One bad record fails the batch so the watermark stays put
                raise RemoteTransientError(f"Malformed record in {table_name} pull: {e}") from e
        logger.info(f"Pulled {len(records)} remote record(s) for {table_name}.")
        return records

    def close(self):
        self.session.close()


class OfflineRemoteClient(RemoteClient):
    """Stand-in used when no remote store is configured. Every call fails as transient, so work stays queued."""

    def push(self, table_name: str, op_type: OperationType, payload: Dict[str, Any],
             operation_id: Optional[str] = None) -> None:
        raise RemoteTransientError("No remote store configured")

    def pull(self, table_name: str, since_watermark: Optional[str]) -> List[RemoteRecord]:
        raise RemoteTransientError("No remote store configured")
