"""
Unit tests for the API pagination loop.
"""

import pytest

from forcam_ingest.core.config import ApiEndpoint, ApiSettings
from forcam_ingest.core.errors import ApiRequestError, TransientApiError
from forcam_ingest.pipeline.api_ingest import ApiIngestor, page_descriptor
from forcam_ingest.sources.api_client import ApiPage

ENDPOINT = ApiEndpoint(path="/api/v1/cycles")


def item(second, machine="MachineX"):
    return {"machineName": machine, "cycleTime": 1.5, "timestamp": f"2025-01-01T08:00:{second:02d}Z"}


class ScriptedClient:
    """Returns (or raises) the scripted results in order, then empty pages."""

    def __init__(self, results):
        self.results = list(results)
        self.calls = []

    def fetch_page(self, endpoint, page_token=None, page_number=1):
        self.calls.append((endpoint.path, page_token, page_number))
        result = self.results.pop(0) if self.results else ApiPage()
        if isinstance(result, Exception):
            raise result
        return result


@pytest.fixture
def api_settings():
    return ApiSettings(
        base_url="https://forcam.example.com",
        token="secret",
        endpoints=[ENDPOINT],
        fetch_max_attempts=2,
        fetch_base_delay_seconds=0,
        max_pages=50,
    )


@pytest.fixture
def make_ingestor(batch_loader, no_wait_retry, api_settings, load_settings, run_context):
    def _make(results, settings=None):
        client = ScriptedClient(results)
        ingestor = ApiIngestor(client, batch_loader, no_wait_retry, settings or api_settings,
                               load_settings, run_context)
        return ingestor, client

    return _make


class TestPagination:
    """When the loop advances and when it stops"""

    def test_empty_first_page_ends_without_batches(self, make_ingestor, fake_store, run_context):
        """Scenario: the endpoint returns an empty first page"""
        ingestor, client = make_ingestor([ApiPage(items=[])])

        assert ingestor.run_endpoint(ENDPOINT) == 0
        assert len(client.calls) == 1
        assert fake_store.opened == 0
        assert fake_store.errors == []
        assert run_context.count("api_pages_failed") == 0

    def test_page_numbers_until_empty_page(self, make_ingestor, fake_store, run_context):
        ingestor, client = make_ingestor([
            ApiPage(items=[item(1), item(2)]),
            ApiPage(items=[item(3)]),
            ApiPage(items=[]),
        ])

        assert ingestor.run_endpoint(ENDPOINT) == 2
        assert [number for _, _, number in client.calls] == [1, 2, 3]
        assert len(fake_store.rows) == 3
        assert run_context.count("api_pages_ok") == 2
        assert [s.source for s in fake_store.summaries] == [
            "/api/v1/cycles#page=1", "/api/v1/cycles#page=2",
        ]

    def test_total_pages_stops_the_loop(self, make_ingestor):
        ingestor, client = make_ingestor([
            ApiPage(items=[item(1)], total_pages=2),
            ApiPage(items=[item(2)], total_pages=2),
            ApiPage(items=[item(3)], total_pages=2),
        ])
        assert ingestor.run_endpoint(ENDPOINT) == 2
        assert len(client.calls) == 2

    def test_has_more_false_stops_the_loop(self, make_ingestor):
        ingestor, client = make_ingestor([ApiPage(items=[item(1)], has_more=False), ApiPage(items=[item(2)])])
        assert ingestor.run_endpoint(ENDPOINT) == 1
        assert len(client.calls) == 1

    def test_cursor_pagination(self, make_ingestor):
        ingestor, client = make_ingestor([
            ApiPage(items=[item(1)], next_page_token="abc"),
            ApiPage(items=[item(2)], next_page_token="def"),
            ApiPage(items=[item(3)]),
        ])
        assert ingestor.run_endpoint(ENDPOINT) == 3
        assert [token for _, token, _ in client.calls] == [None, "abc", "def"]

    def test_repeated_cursor_stops(self, make_ingestor):
        ingestor, client = make_ingestor([
            ApiPage(items=[item(1)], next_page_token="abc"),
            ApiPage(items=[item(2)], next_page_token="abc"),
            ApiPage(items=[item(3)]),
        ])
        assert ingestor.run_endpoint(ENDPOINT) == 2
        assert len(client.calls) == 2

    def test_max_pages_cap(self, make_ingestor, api_settings):
        settings = api_settings.model_copy(update={"max_pages": 2})
        ingestor, client = make_ingestor([ApiPage(items=[item(i)]) for i in range(5)], settings)
        assert ingestor.run_endpoint(ENDPOINT) == 2
        assert len(client.calls) == 2

    def test_stop_request_ends_loop(self, make_ingestor, run_context):
        run_context.request_stop()
        ingestor, client = make_ingestor([ApiPage(items=[item(1)])])
        assert ingestor.run_endpoint(ENDPOINT) == 0
        assert client.calls == []


class TestFailures:
    """Fetch and load failures"""

    def test_transient_fetch_failure_is_retried(self, make_ingestor):
        ingestor, client = make_ingestor([TransientApiError("503"), ApiPage(items=[item(1)], has_more=False)])
        assert ingestor.run_endpoint(ENDPOINT) == 1
        assert len(client.calls) == 2

    def test_fetch_failure_after_retries_ends_endpoint(self, make_ingestor, fake_store, run_context):
        ingestor, client = make_ingestor([TransientApiError("503"), TransientApiError("503"),
                                          ApiPage(items=[item(1)])])

        assert ingestor.run_endpoint(ENDPOINT) == 0
        assert len(client.calls) == 2
        assert run_context.count("api_pages_failed") == 1
        message, severity, context = fake_store.errors[0]
        assert message.startswith("API page failed")
        assert context["file_path"] == "/api/v1/cycles#page=1"
        assert run_context.snapshot().sources["/api/v1/cycles"].failed == 1

    def test_non_retryable_fetch_failure(self, make_ingestor, run_context):
        ingestor, client = make_ingestor([ApiRequestError("404", status_code=404)])
        assert ingestor.run_endpoint(ENDPOINT) == 0
        assert len(client.calls) == 1
        assert run_context.count("api_pages_failed") == 1

    def test_failed_page_load_moves_on(self, make_ingestor, fake_store, run_context):
        """A page rolled back for its error budget does not stop the endpoint"""
        fake_store.reject = lambda record: record.machine_name == "BAD"
        bad_page = ApiPage(items=[item(i, machine="BAD") for i in range(5)])
        ingestor, client = make_ingestor([bad_page, ApiPage(items=[item(10)]), ApiPage(items=[])])

        assert ingestor.run_endpoint(ENDPOINT) == 2
        assert run_context.count("api_pages_failed") == 1
        assert run_context.count("api_pages_ok") == 1
        assert len(fake_store.rows) == 1


def test_run_walks_all_endpoints(make_ingestor, api_settings):
    settings = api_settings.model_copy(update={"endpoints": [ENDPOINT, ApiEndpoint(path="/api/v1/other")]})
    ingestor, client = make_ingestor([ApiPage(items=[item(1)], has_more=False),
                                      ApiPage(items=[item(2)], has_more=False)], settings)
    ingestor.run()
    assert [path for path, _, _ in client.calls] == ["/api/v1/cycles", "/api/v1/other"]


def test_page_descriptor():
    assert page_descriptor(ENDPOINT, 3) == "/api/v1/cycles#page=3"
