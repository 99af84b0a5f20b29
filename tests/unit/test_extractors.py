"""
Unit tests for the Firebase record source and the status reporter
"""

import httpx
import pytest
import respx
from core.exceptions import SourceFetchError
from ingestion.extractors.firebase_extractor import FirebaseRecordSource
from ingestion.status_reporter import StatusReporter

DB_URL = "https://retail-test.firebaseio.com"
STATUS_URL = "https://status.example.com/sync"


class TestFirebaseRecordSource:
    """Snapshot fetching"""

    @pytest.mark.asyncio
    @respx.mock
    async def test_fetch_flattens_children(self):
        route = respx.get(f"{DB_URL}/Orders_News.json").mock(
            return_value=httpx.Response(200, json={
                "ORD1": {"order_id": "ORD1", "status": "Placed"},
                "ORD2": {"order_id": "ORD2", "status": "Delivered"},
                "broken": "scalar",
            })
        )
        source = FirebaseRecordSource(DB_URL, auth_token="secret")

        records = await source.fetch("Orders_News")
        await source.close()

        assert route.called
        assert route.calls.last.request.url.params["auth"] == "secret"
        assert records == [
            {"order_id": "ORD1", "status": "Placed", "firebase_key": "ORD1"},
            {"order_id": "ORD2", "status": "Delivered", "firebase_key": "ORD2"},
        ]

    @pytest.mark.asyncio
    @respx.mock
    async def test_empty_path_returns_empty_list(self):
        respx.get(f"{DB_URL}/Salesman_Details.json").mock(return_value=httpx.Response(200, json=None))
        source = FirebaseRecordSource(DB_URL)

        assert await source.fetch("Salesman_Details") == []
        await source.close()

    @pytest.mark.asyncio
    @respx.mock
    async def test_array_snapshot_uses_index_keys(self):
        respx.get(f"{DB_URL}/Retailer_Master.json").mock(
            return_value=httpx.Response(200, json=[None, {"retailer_id": "R1"}])
        )
        source = FirebaseRecordSource(DB_URL)

        assert await source.fetch("Retailer_Master") == [{"retailer_id": "R1", "firebase_key": "1"}]
        await source.close()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status_code", [401, 403, 500, 503])
    @respx.mock
    async def test_error_status_raises(self, status_code):
        respx.get(f"{DB_URL}/Orders_News.json").mock(return_value=httpx.Response(status_code, text="denied"))
        source = FirebaseRecordSource(DB_URL)

        with pytest.raises(SourceFetchError) as exc_info:
            await source.fetch("Orders_News")
        await source.close()

        assert exc_info.value.context["status_code"] == status_code

    @pytest.mark.asyncio
    @respx.mock
    async def test_transport_error_raises(self):
        respx.get(f"{DB_URL}/Orders_News.json").mock(side_effect=httpx.ConnectError("connection refused"))
        source = FirebaseRecordSource(DB_URL)

        with pytest.raises(SourceFetchError):
            await source.fetch("Orders_News")
        await source.close()


class TestStatusReporter:
    """Best-effort status pushes"""

    @pytest.mark.asyncio
    @respx.mock
    async def test_report_posts_status(self):
        route = respx.post(STATUS_URL).mock(return_value=httpx.Response(200))
        reporter = StatusReporter(STATUS_URL)

        ok = await reporter.report("Orders_News", "Running", "OrdersNew_2024-01-15_10:00:00_ab12cd34")
        await reporter.close()

        assert ok is True
        body = route.calls.last.request.content
        assert b'"table_name":"Orders_News"' in body.replace(b" ", b"")
        assert b"error_message" not in body

    @pytest.mark.asyncio
    @respx.mock
    async def test_error_message_included(self):
        route = respx.post(STATUS_URL).mock(return_value=httpx.Response(204))
        reporter = StatusReporter(STATUS_URL)

        await reporter.report("Orders_News", "Failed", "k", error_message="boom")
        await reporter.close()

        assert b'"error_message":"boom"' in route.calls.last.request.content.replace(b" ", b"")

    @pytest.mark.asyncio
    @respx.mock
    async def test_failures_are_not_raised(self):
        respx.post(STATUS_URL).mock(side_effect=[
            httpx.Response(500),
            httpx.ConnectTimeout("timed out"),
        ])
        reporter = StatusReporter(STATUS_URL)

        assert await reporter.report("Orders_News", "Running", "k") is False
        assert await reporter.report("Orders_News", "Running", "k") is False
        await reporter.close()

    @pytest.mark.asyncio
    async def test_disabled_without_endpoint(self):
        reporter = StatusReporter(None)
        assert reporter.enabled is False
        assert await reporter.report("Orders_News", "Running", "k") is False

    @pytest.mark.asyncio
    async def test_malformed_endpoint_is_not_raised(self):
        reporter = StatusReporter("http://[::1")

        assert await reporter.report("Orders_News", "Running", "k") is False
        await reporter.close()
