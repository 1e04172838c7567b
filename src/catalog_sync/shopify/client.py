"""
Async wrapper around the Shopify Admin GraphQL API for bulk operations.

requests is synchronous; calls run in the default thread pool executor so
they don't block the asyncio event loop. Every call goes through one
RetryPolicy, so transient failures (network, 429, 5xx, THROTTLED) are
retried uniformly and everything else surfaces on the first attempt.

The client holds no sync state: it starts jobs, polls them, and streams
their result files.
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Optional

import requests

from catalog_sync.shopify.errors import BulkJobUserError, RemoteError, RemoteTransientError
from catalog_sync.shopify.queries import BULK_OPERATION_STATUS_QUERY, CURRENT_BULK_OPERATION_QUERY
from catalog_sync.shopify.retry import RetryPolicy, is_retryable_status

logger = logging.getLogger(__name__)

# Remote job statuses
CREATED = "CREATED"
RUNNING = "RUNNING"
COMPLETED = "COMPLETED"
FAILED = "FAILED"
CANCELED = "CANCELED"
CANCELING = "CANCELING"

ACTIVE_JOB_STATUSES = frozenset({CREATED, RUNNING, CANCELING})

RESULT_CHUNK_SIZE = 64 * 1024


@dataclass(frozen=True)
class BulkJob:
    """Snapshot of a remote bulk operation. url is only set once COMPLETED."""

    id: str
    status: str
    object_count: int = 0
    url: Optional[str] = None
    error_code: Optional[str] = None

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "BulkJob":
        return cls(
            id=payload.get("id") or "",
            status=(payload.get("status") or "").upper(),
            object_count=int(payload.get("objectCount") or 0),
            url=payload.get("url"),
            error_code=payload.get("errorCode"),
        )


class ShopifyClient:
    """
    Thin async client for bulkOperationRunQuery and its status queries.

    Usage:
        client = ShopifyClient.from_settings(get_settings())
        job = await client.start_job(BASELINE_BULK_QUERY)
        job = await client.poll_status(job.id)
        for chunk in client.iter_result(job.url):
            ...
    """

    def __init__(
        self,
        store_domain: str,
        access_token: str,
        api_version: str = "2024-01",
        *,
        retry: Optional[RetryPolicy] = None,
        session: Optional[requests.Session] = None,
        timeout: float = 30.0,
    ):
        self.store_domain = store_domain
        self.access_token = access_token
        self.api_version = api_version
        self.retry = retry or RetryPolicy()
        self.session = session or requests.Session()
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings) -> "ShopifyClient":
        """Build a client from Settings; raises ConfigurationError if credentials are missing."""
        settings.require_shopify()
        return cls(
            settings.shopify_store_domain,
            settings.shopify_access_token,
            settings.shopify_api_version,
            retry=RetryPolicy(
                max_attempts=settings.retry_max_attempts,
                base_delay=settings.retry_base_delay_seconds,
                max_jitter=settings.retry_max_jitter_seconds,
            ),
        )

    @property
    def endpoint(self) -> str:
        return f"https://{self.store_domain}/admin/api/{self.api_version}/graphql.json"

    # ─── Async API ────────────────────────────────────────────────────────────

    async def _run(self, fn, *args, **kwargs):
        """Run a blocking call in the thread pool."""
        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(None, lambda: fn(*args, **kwargs))

    async def start_job(self, query_text: str) -> BulkJob:
        """
        Submit a bulkOperationRunQuery mutation.

        Raises:
            BulkJobUserError: Shopify rejected the query (userErrors).
            RemoteError: no operation id came back, or the call failed.
        """
        data = await self._run(self.graphql, query_text)
        result = data.get("bulkOperationRunQuery") or {}
        user_errors: List[dict] = result.get("userErrors") or []
        if user_errors:
            raise BulkJobUserError(user_errors)
        operation = result.get("bulkOperation") or {}
        if not operation.get("id"):
            raise RemoteError("No operation ID returned from Shopify")
        job = BulkJob.from_payload(operation)
        logger.info("Bulk operation %s started (%s)", job.id, job.status)
        return job

    async def poll_status(self, operation_id: str) -> BulkJob:
        """Fetch the current state of a specific bulk operation."""
        data = await self._run(
            self.graphql, BULK_OPERATION_STATUS_QUERY, {"id": operation_id}
        )
        node = data.get("node")
        if not node:
            raise RemoteError(f"Bulk operation not found: {operation_id}")
        return BulkJob.from_payload(node)

    async def current_job(self) -> Optional[BulkJob]:
        """Return the shop's current bulk operation, or None if it has never run one."""
        data = await self._run(self.graphql, CURRENT_BULK_OPERATION_QUERY)
        operation = data.get("currentBulkOperation")
        return BulkJob.from_payload(operation) if operation else None

    # ─── Blocking API ─────────────────────────────────────────────────────────

    def graphql(self, query: str, variables: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """POST a GraphQL document and return its `data` object, with retries."""
        return self.retry.call(
            lambda: self._post_once(query, variables), description="Shopify GraphQL"
        )

    def iter_result(self, url: str, chunk_size: int = RESULT_CHUNK_SIZE) -> Iterator[bytes]:
        """
        Stream a bulk result file as raw byte chunks.

        Opening the download is retried; once bytes are flowing, a dropped
        connection surfaces to the caller.
        """
        response = self.retry.call(lambda: self._open_result(url), description="result download")
        try:
            for chunk in response.iter_content(chunk_size=chunk_size):
                if chunk:
                    yield chunk
        except requests.RequestException as exc:
            raise RemoteError(f"Result download interrupted: {exc}") from exc
        finally:
            response.close()

    # ─── Internal helpers ─────────────────────────────────────────────────────

    def _headers(self) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "X-Shopify-Access-Token": self.access_token,
        }

    def _post_once(self, query: str, variables: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"query": query}
        if variables:
            payload["variables"] = variables
        try:
            response = self.session.post(
                self.endpoint, headers=self._headers(), json=payload, timeout=self.timeout
            )
        except (requests.ConnectionError, requests.Timeout) as exc:
            raise RemoteTransientError(f"Shopify request failed: {exc}", status_code=0) from exc
        except requests.RequestException as exc:
            raise RemoteError(f"Shopify request failed: {exc}") from exc

        status = response.status_code
        if is_retryable_status(status):
            raise RemoteTransientError(
                f"Shopify returned HTTP {status}: {(response.text or '')[:500]}", status_code=status
            )
        if status >= 400:
            raise RemoteError(
                f"Shopify returned HTTP {status}: {(response.text or '')[:500]}", status_code=status
            )

        try:
            body = response.json()
        except ValueError as exc:
            raise RemoteError("Shopify returned a non-JSON response", status_code=status) from exc
        if not isinstance(body, dict):
            raise RemoteError("Shopify returned an unexpected response body", status_code=status)

        errors = body.get("errors")
        if errors:
            if isinstance(errors, list):
                if any(
                    isinstance(e, dict) and (e.get("extensions") or {}).get("code") == "THROTTLED"
                    for e in errors
                ):
                    raise RemoteTransientError("Shopify GraphQL request throttled", status_code=status)
                first = errors[0] if isinstance(errors[0], dict) else {}
                message = first.get("message") or "GraphQL error"
            else:
                message = str(errors)
            raise RemoteError(message, status_code=status)

        data = body.get("data") or {}
        if not isinstance(data, dict):
            raise RemoteError("Shopify returned an unexpected data payload", status_code=status)
        return data

    def _open_result(self, url: str) -> requests.Response:
        try:
            response = self.session.get(url, stream=True, timeout=self.timeout)
        except (requests.ConnectionError, requests.Timeout) as exc:
            raise RemoteTransientError(f"Result download failed: {exc}", status_code=0) from exc
        except requests.RequestException as exc:
            raise RemoteError(f"Result download failed: {exc}") from exc
        status = response.status_code
        if status >= 400:
            response.close()
            message = f"Failed to download results: HTTP {status}"
            if is_retryable_status(status):
                raise RemoteTransientError(message, status_code=status)
            raise RemoteError(message, status_code=status)
        return response
