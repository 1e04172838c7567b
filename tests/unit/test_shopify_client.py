"""
Tests for ShopifyClient.

requests is replaced by FakeSession/FakeResponse; the retry policy gets a
no-op sleep so transient-failure tests run instantly.
"""
import json

import pytest
import requests

from catalog_sync.shopify.client import BulkJob, ShopifyClient
from catalog_sync.shopify.errors import (
    BulkJobUserError,
    ConfigurationError,
    RemoteError,
    RemoteTransientError,
)
from catalog_sync.shopify.retry import RetryPolicy


class FakeResponse:
    def __init__(self, *, status_code=200, json_data=None, text=None, chunks=None):
        self.status_code = status_code
        self._json_data = json_data
        self.text = text if text is not None else json.dumps(json_data or {})
        self._chunks = chunks or []
        self.closed = False

    def json(self):
        if self._json_data is None:
            raise ValueError("No JSON object could be decoded")
        return self._json_data

    def iter_content(self, chunk_size=None):
        yield from self._chunks

    def close(self):
        self.closed = True


class FakeSession:
    """Returns queued responses in order; an Exception in the queue is raised."""

    def __init__(self, responses):
        self.responses = list(responses)
        self.post_calls = []
        self.get_calls = []

    def _next(self):
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    def post(self, url, headers=None, json=None, timeout=None):
        self.post_calls.append((url, headers, json))
        return self._next()

    def get(self, url, stream=False, timeout=None):
        self.get_calls.append((url, stream))
        return self._next()


def _client(responses, attempts=3):
    session = FakeSession(responses)
    client = ShopifyClient(
        "shop.myshopify.com",
        "shpat_test",
        "2024-01",
        retry=RetryPolicy(max_attempts=attempts, sleep=lambda _: None, jitter=lambda: 0.0),
        session=session,
    )
    return client, session


def _data(payload):
    return FakeResponse(json_data={"data": payload})


class TestStartJob:
    @pytest.mark.asyncio
    async def test_returns_job_handle(self):
        client, session = _client([_data({
            "bulkOperationRunQuery": {
                "bulkOperation": {"id": "gid://shopify/BulkOperation/1", "status": "CREATED"},
                "userErrors": [],
            }
        })])
        job = await client.start_job("mutation { x }")
        assert job == BulkJob(id="gid://shopify/BulkOperation/1", status="CREATED")

        url, headers, body = session.post_calls[0]
        assert url == "https://shop.myshopify.com/admin/api/2024-01/graphql.json"
        assert headers["X-Shopify-Access-Token"] == "shpat_test"
        assert body == {"query": "mutation { x }"}

    @pytest.mark.asyncio
    async def test_user_errors_raise(self):
        client, _ = _client([_data({
            "bulkOperationRunQuery": {
                "bulkOperation": None,
                "userErrors": [{"field": ["query"], "message": "A bulk operation is already running"}],
            }
        })])
        with pytest.raises(BulkJobUserError, match="already running") as excinfo:
            await client.start_job("mutation { x }")
        assert excinfo.value.user_errors[0]["field"] == ["query"]

    @pytest.mark.asyncio
    async def test_missing_operation_id_raises(self):
        client, _ = _client([_data({"bulkOperationRunQuery": {"bulkOperation": None, "userErrors": []}})])
        with pytest.raises(RemoteError, match="No operation ID"):
            await client.start_job("mutation { x }")


class TestPollStatus:
    @pytest.mark.asyncio
    async def test_completed_job_has_url_and_count(self):
        client, session = _client([_data({
            "node": {
                "id": "gid://shopify/BulkOperation/1",
                "status": "COMPLETED",
                "objectCount": "52011",
                "url": "https://storage.shopifycloud.com/result.jsonl",
            }
        })])
        job = await client.poll_status("gid://shopify/BulkOperation/1")
        assert job.status == "COMPLETED"
        assert job.object_count == 52011
        assert job.url.endswith("result.jsonl")
        assert session.post_calls[0][2]["variables"] == {"id": "gid://shopify/BulkOperation/1"}

    @pytest.mark.asyncio
    async def test_unknown_operation_raises(self):
        client, _ = _client([_data({"node": None})])
        with pytest.raises(RemoteError, match="not found"):
            await client.poll_status("gid://shopify/BulkOperation/404")


class TestCurrentJob:
    @pytest.mark.asyncio
    async def test_none_when_shop_never_ran_one(self):
        client, _ = _client([_data({"currentBulkOperation": None})])
        assert await client.current_job() is None

    @pytest.mark.asyncio
    async def test_status_uppercased(self):
        client, _ = _client([_data({"currentBulkOperation": {"id": "b1", "status": "running"}})])
        job = await client.current_job()
        assert job.status == "RUNNING"


class TestRetryBehaviour:
    def test_retries_5xx_then_succeeds(self):
        client, session = _client([
            FakeResponse(status_code=502, text="Bad Gateway"),
            FakeResponse(status_code=429, text="Too Many Requests"),
            _data({"shop": {"name": "x"}}),
        ])
        assert client.graphql("query { shop { name } }") == {"shop": {"name": "x"}}
        assert len(session.post_calls) == 3

    def test_network_error_is_transient(self):
        client, session = _client([requests.ConnectionError("reset"), _data({"ok": True})])
        assert client.graphql("query") == {"ok": True}
        assert len(session.post_calls) == 2

    def test_exhausted_retries_surface_transient_error(self):
        client, session = _client([FakeResponse(status_code=503, text="down")] * 3, attempts=3)
        with pytest.raises(RemoteTransientError) as excinfo:
            client.graphql("query")
        assert excinfo.value.status_code == 503
        assert len(session.post_calls) == 3

    def test_client_error_not_retried(self):
        client, session = _client([FakeResponse(status_code=401, text="Unauthorized")])
        with pytest.raises(RemoteError) as excinfo:
            client.graphql("query")
        assert not isinstance(excinfo.value, RemoteTransientError)
        assert len(session.post_calls) == 1

    def test_throttled_graphql_error_retried(self):
        client, session = _client([
            FakeResponse(json_data={"errors": [{"message": "Throttled", "extensions": {"code": "THROTTLED"}}]}),
            _data({"ok": True}),
        ])
        assert client.graphql("query") == {"ok": True}
        assert len(session.post_calls) == 2

    def test_other_graphql_error_not_retried(self):
        client, session = _client([FakeResponse(json_data={"errors": [{"message": "Field 'x' doesn't exist"}]})])
        with pytest.raises(RemoteError, match="doesn't exist"):
            client.graphql("query")
        assert len(session.post_calls) == 1

    def test_non_json_body_raises(self):
        client, _ = _client([FakeResponse(status_code=200, text="<html>")])
        with pytest.raises(RemoteError, match="non-JSON"):
            client.graphql("query")

    def test_other_transport_errors_wrapped(self):
        client, session = _client([requests.TooManyRedirects("Exceeded 30 redirects.")])
        with pytest.raises(RemoteError, match="redirects") as excinfo:
            client.graphql("query")
        assert not isinstance(excinfo.value, RemoteTransientError)
        assert len(session.post_calls) == 1

    def test_non_object_body_raises(self):
        client, _ = _client([FakeResponse(json_data=[{"data": {}}])])
        with pytest.raises(RemoteError, match="unexpected response body"):
            client.graphql("query")


class TestIterResult:
    def test_streams_chunks_and_closes(self):
        response = FakeResponse(chunks=[b'{"id": 1}\n{"i', b'd": 2}\n', b""])
        client, session = _client([response])
        chunks = list(client.iter_result("https://storage/result.jsonl"))
        assert chunks == [b'{"id": 1}\n{"i', b'd": 2}\n']
        assert response.closed
        assert session.get_calls == [("https://storage/result.jsonl", True)]

    def test_download_retries_on_5xx(self):
        client, session = _client([
            FakeResponse(status_code=500, text="oops"),
            FakeResponse(chunks=[b"x"]),
        ])
        assert list(client.iter_result("https://storage/r")) == [b"x"]
        assert len(session.get_calls) == 2

    def test_download_403_raises(self):
        client, _ = _client([FakeResponse(status_code=403, text="expired")])
        with pytest.raises(RemoteError, match="HTTP 403"):
            list(client.iter_result("https://storage/r"))

    def test_download_invalid_url_raises(self):
        client, _ = _client([requests.exceptions.InvalidURL("No host supplied")])
        with pytest.raises(RemoteError, match="No host supplied"):
            list(client.iter_result("https:///r"))


class TestFromSettings:
    def test_missing_credentials_raise(self):
        from catalog_sync.config import Settings

        settings = Settings(_env_file=None, shopify_store_domain="", shopify_access_token="")
        with pytest.raises(ConfigurationError, match="SHOPIFY_STORE_DOMAIN"):
            ShopifyClient.from_settings(settings)

    def test_builds_retry_policy_from_settings(self):
        from catalog_sync.config import Settings

        settings = Settings(
            _env_file=None,
            shopify_store_domain="shop.myshopify.com",
            shopify_access_token="tok",
            retry_max_attempts=2,
        )
        client = ShopifyClient.from_settings(settings)
        assert client.retry.max_attempts == 2
        assert client.endpoint.startswith("https://shop.myshopify.com/admin/api/")
