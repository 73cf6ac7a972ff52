"""
API ingestion loop.

Walks each configured endpoint page by page: fetch (retried), load as one
batch (retried on store failures), advance. Supports cursor pagination
(next links / page tokens) and page-number pagination with an optional
total page count.
"""
from forcam_ingest.core.config import ApiEndpoint, ApiSettings, LoadSettings
from forcam_ingest.core.errors import OperationCancelled, TransientApiError, TransientStoreError
from forcam_ingest.core.models import BatchStatus, ImportType
from forcam_ingest.observability import metrics
from forcam_ingest.observability.logger import get_logger, log_operation
from forcam_ingest.pipeline.batch_loader import BatchLoader, BatchSource
from forcam_ingest.pipeline.retry import RetryExecutor
from forcam_ingest.pipeline.run_context import RunContext
from forcam_ingest.sources.api_client import ApiPage, RestApiClient

logger = get_logger(__name__)


def page_descriptor(endpoint: ApiEndpoint, page_number: int) -> str:
    return f"{endpoint.path}#page={page_number}"


class ApiIngestor:
    """
    Sequential pagination over all configured endpoints.

    Args:
        client: REST page fetcher
        loader: Batch loader
        retry: Retry executor sharing the run's stop event
        api_settings: API section of the run settings
        load_settings: Load section of the run settings
        context: Run counters
    """

    def __init__(
        self,
        client: RestApiClient,
        loader: BatchLoader,
        retry: RetryExecutor,
        api_settings: ApiSettings,
        load_settings: LoadSettings,
        context: RunContext,
    ):
        self.client = client
        self.loader = loader
        self.retry = retry
        self.api_settings = api_settings
        self.load_settings = load_settings
        self.context = context

    def run(self) -> None:
        """Ingest every endpoint in configuration order."""
        for endpoint in self.api_settings.endpoints:
            if self.context.stopping:
                break
            with log_operation("API endpoint ingestion", logger=logger, endpoint=endpoint.path):
                self.run_endpoint(endpoint)

    def _page_failed(self, endpoint: ApiEndpoint, page_number: int, error: str | None) -> None:
        self.context.incr("api_pages_failed")
        self.context.record_source(endpoint.path, succeeded=False)
        metrics.api_pages_total.labels(endpoint=endpoint.path, status="failed").inc()
        self.loader.store.log_error(
            f"API page failed: {error}",
            16,
            {"file_path": page_descriptor(endpoint, page_number), "endpoint": endpoint.path},
        )

    def _load_page(self, endpoint: ApiEndpoint, page_number: int, page: ApiPage) -> bool:
        source = BatchSource(
            import_type=ImportType.API,
            descriptor=page_descriptor(endpoint, page_number),
            endpoint=endpoint.path,
            rows=page.items,
        )
        outcome = self.retry.execute(
            lambda: self.loader.run_batch(source),
            self.load_settings.load_max_attempts,
            self.load_settings.load_base_delay_seconds,
            retry_on=(TransientStoreError,),
            operation_name="api_page_load",
        )
        if not outcome.ok:
            self._page_failed(endpoint, page_number, str(outcome.error))
            return False
        if outcome.value.status is BatchStatus.FAILED:
            self._page_failed(endpoint, page_number, outcome.value.error)
            return False

        self.context.incr("api_pages_ok")
        self.context.record_source(endpoint.path, succeeded=True)
        metrics.api_pages_total.labels(endpoint=endpoint.path, status="ok").inc()
        return True

    def run_endpoint(self, endpoint: ApiEndpoint) -> int:
        """
        Paginate one endpoint until it is exhausted.

        Stops on an empty page, has_more == False, page_number >= total_pages,
        a cursor source that returns no next cursor, a repeated cursor, a
        fetch failure after retries, max_pages, or a stop request. A page
        whose load fails is counted and skipped.

        Returns:
            Number of non-empty pages handled
        """
        page_number = 1
        token: str | None = None
        seen_tokens: set[str] = set()
        pages = 0

        while not self.context.stopping:
            if page_number > self.api_settings.max_pages:
                logger.warning(
                    "Page limit reached",
                    extra={"endpoint": endpoint.path, "max_pages": self.api_settings.max_pages},
                )
                break

            try:
                fetched = self.retry.execute(
                    lambda: self.client.fetch_page(endpoint, page_token=token, page_number=page_number),
                    self.api_settings.fetch_max_attempts,
                    self.api_settings.fetch_base_delay_seconds,
                    retry_on=(TransientApiError,),
                    operation_name="api_fetch",
                )
            except OperationCancelled:
                break

            if not fetched.ok:
                self._page_failed(endpoint, page_number, str(fetched.error))
                break

            page: ApiPage = fetched.value
            if not page.items:
                logger.info("Empty page, endpoint exhausted",
                            extra={"endpoint": endpoint.path, "page": page_number})
                break

            try:
                self._load_page(endpoint, page_number, page)
            except OperationCancelled:
                break
            pages += 1

            if page.has_more is False:
                break
            if page.total_pages is not None and page_number >= page.total_pages:
                break
            if page.next_page_token:
                if page.next_page_token in seen_tokens:
                    logger.warning("Cursor repeated, stopping",
                                   extra={"endpoint": endpoint.path, "page": page_number})
                    break
                seen_tokens.add(page.next_page_token)
                token = page.next_page_token
            elif token is not None:
                # Cursor source without a further cursor
                break

            page_number += 1

        return pages
