import asyncio
import json
from collections.abc import Mapping as MappingABC
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Mapping, Sequence

import aiohttp
from tqdm import tqdm
from src.config.logger_config import logger

from src.sitewatch.application.contracts import (
    FetchedDocument,
    FetchRequest,
    event_response_context,
    response_context,
)
from src.sitewatch.application.ports import (
    DocumentFetcherPort,
    EventStorePort,
    QueryConnectionPort,
    TemplateRendererPort,
)
from src.sitewatch.domain.aggregation import EventAggregator
from src.sitewatch.domain.aligner import align
from src.sitewatch.domain.errors import ExtractionTypeError, SchemaError
from src.sitewatch.domain.models import CheckSummary
from src.sitewatch.domain.options import AgentOptions
from src.sitewatch.domain.resolvers import parse_document, resolve
from src.sitewatch.domain.templating import merge_template
from src.sitewatch.domain.uniqueness import MODE_MERGE, UniquenessEngine


@dataclass(frozen=True)
class CheckWorkflowConfig:
    fetch_concurrency: int = 5
    event_ttl_days: int = 0
    connector_limit_per_host: int = 10
    connector_ttl_dns_cache: int = 300
    show_progress: bool = False


@dataclass
class _RunStats:
    documents_total: int = 0
    documents_failed: int = 0
    tuples_total: int = 0
    new_total: int = 0
    duplicate_total: int = 0
    events_created: int = 0

    def summary(self) -> CheckSummary:
        return CheckSummary(
            documents_total=self.documents_total,
            documents_failed=self.documents_failed,
            tuples_total=self.tuples_total,
            new_total=self.new_total,
            duplicate_total=self.duplicate_total,
            events_created=self.events_created,
        )


class CheckDocumentsWorkflow:
    """Fetches the configured documents, extracts payloads and stores new events.

    One invocation (`check`, `check_urls` or `receive`) shares a single buffer
    of pending payloads; events are only created once every document of the
    invocation has been handled.
    """

    def __init__(
        self,
        options: AgentOptions,
        fetcher: DocumentFetcherPort,
        store: EventStorePort,
        renderer: TemplateRendererPort,
        query_client: QueryConnectionPort | None = None,
        config: CheckWorkflowConfig | None = None,
        agent_name: str = "sitewatch",
    ) -> None:
        self.options = options
        self.fetcher = fetcher
        self.store = store
        self.renderer = renderer
        self.query_client = query_client
        self.config = config or CheckWorkflowConfig()
        self.agent_name = agent_name
        self._validate_templates()
        self.uniqueness = UniquenessEngine(
            options.mode,
            store,
            uniqueness_keys=options.uniqueness_keys,
            look_back=options.uniqueness_look_back,
            expiration=self._expiration,
        )
        self.aggregator = EventAggregator(
            aggregate=options.aggregate_events,
            limit=options.aggregate_limit,
            extra_payload=options.extra_payload,
            digest_extra_payload=options.digest_extra_payload,
            compact_keys=options.compact_keys,
            predicate=self._accepts if options.filter_callback else None,
        )
        self._semaphore = asyncio.Semaphore(self.config.fetch_concurrency)
        self._query_lock = asyncio.Lock()

    def _validate_templates(self) -> None:
        errors: list[str] = []
        expressions = dict(self.options.template)
        for option in ("url_from_event", "data_from_event", "post_body_from_event"):
            value = getattr(self.options, option)
            if value:
                expressions[option] = value
        post_body = self.options.post_body
        bodies = post_body if isinstance(post_body, list) else [post_body]
        for index, body in enumerate(bodies):
            if isinstance(body, str) and body:
                key = f"post_body[{index}]" if isinstance(post_body, list) else "post_body"
                expressions[key] = body
        for key, expression in expressions.items():
            try:
                self.renderer.validate(expression)
            except SchemaError as exc:
                errors.extend(f"{key}: {message}" for message in exc.errors)
        if self.options.filter_callback:
            try:
                self.renderer.validate_expression(self.options.filter_callback)
            except SchemaError as exc:
                errors.extend(f"filter_callback: {message}" for message in exc.errors)
        if errors:
            raise SchemaError(errors)

    def _expiration(self) -> datetime | None:
        days = self.options.keep_events_for
        if days is None:
            days = self.config.event_ttl_days
        if not days:
            return None
        return datetime.now(timezone.utc) + timedelta(days=days)

    def _accepts(self, payload: Mapping[str, Any]) -> bool:
        scope = {**payload, "payload": payload, "event": {"payload": payload}}
        return bool(self.renderer.evaluate(self.options.filter_callback, scope))

    async def check(self) -> CheckSummary:
        return await self.check_urls(self.options.urls, self.options.post_body)

    async def check_urls(
        self,
        urls: str | Sequence[str],
        post_body: Any = None,
        existing_payload: Mapping[str, Any] | None = None,
    ) -> CheckSummary:
        if isinstance(urls, str):
            urls = [urls] if urls.strip() else []
        else:
            urls = list(urls or ())
        if not urls:
            logger.warning("No url to check for {}", self.agent_name)
            return _RunStats().summary()

        if isinstance(post_body, list):
            post_bodies = list(post_body)
        else:
            post_bodies = [post_body] * len(urls)
        existing = dict(existing_payload or {})
        stats = _RunStats(documents_total=len(urls))
        buffer: list[dict[str, Any]] = []

        connector = aiohttp.TCPConnector(
            limit_per_host=self.config.connector_limit_per_host,
            ttl_dns_cache=self.config.connector_ttl_dns_cache,
        )
        async with aiohttp.ClientSession(connector=connector) as session:
            with tqdm(
                total=len(urls),
                desc="Documents",
                unit="doc",
                leave=True,
                disable=not self.config.show_progress,
            ) as progress:
                if any(body not in (None, "") for body in post_bodies):
                    # Bodies may refer to `events_buffer`, so each request waits for the previous document.
                    for index, url in enumerate(urls):
                        body = post_bodies[index] if index < len(post_bodies) else None
                        document = await self._fetch_document(session, url, body, buffer, stats)
                        self._process_document(document, existing, buffer, stats)
                        progress.update(1)
                else:
                    documents = await asyncio.gather(
                        *(self._fetch_document(session, url, None, buffer, stats) for url in urls),
                        return_exceptions=False,
                    )
                    for document in documents:
                        self._process_document(document, existing, buffer, stats)
                        progress.update(1)

        stats.events_created = self._flush(buffer)
        logger.info(
            "Checked {} documents for {}: {} new, {} duplicates, {} events created",
            stats.documents_total,
            self.agent_name,
            stats.new_total,
            stats.duplicate_total,
            stats.events_created,
        )
        return stats.summary()

    async def receive(self, incoming_payloads: Sequence[Mapping[str, Any]]) -> CheckSummary:
        summary = _RunStats().summary()
        for incoming in incoming_payloads:
            payload = dict(incoming)
            existing = payload if self.options.mode == MODE_MERGE else {}
            if self.options.data_from_event:
                summary = summary.combined(self._receive_data(payload, existing))
                continue

            if self.options.url_from_event:
                url: str | Sequence[str] = self.renderer.render(self.options.url_from_event, payload)
            else:
                url = self.options.urls
            if self.options.post_body_from_event:
                post_body = self.renderer.render(self.options.post_body_from_event, payload)
            else:
                post_body = self.options.post_body
            summary = summary.combined(await self.check_urls(url, post_body, existing))
        return summary

    def _receive_data(self, payload: dict[str, Any], existing: Mapping[str, Any]) -> CheckSummary:
        data = self.renderer.render(self.options.data_from_event, payload)
        if not data:
            logger.error("No data was found in the event payload using the template {}", self.options.data_from_event)
            return _RunStats().summary()

        stats = _RunStats(documents_total=1)
        buffer: list[dict[str, Any]] = []
        try:
            self.handle_data(data, existing, buffer, stats, event_response_context(payload))
        except Exception as exc:
            logger.exception("Failed extracting data from event with error type {}: {}", type(exc).__name__, exc)
            stats.documents_failed += 1
        stats.events_created = self._flush(buffer)
        return stats.summary()

    def _build_request(self, url: str, body: Any, buffer: Sequence[Mapping[str, Any]]) -> FetchRequest:
        url = url.strip()
        request = FetchRequest(url=url)
        if body in (None, ""):
            return request
        if request.is_query and isinstance(body, MappingABC):
            body = body.get("query")
        if isinstance(body, (MappingABC, list)):
            body = json.dumps(body, ensure_ascii=False)
        rendered = self.renderer.render(str(body), {"events_buffer": list(buffer)})
        return FetchRequest(url=url, body=rendered or None)

    async def _fetch_document(
        self,
        session: aiohttp.ClientSession,
        url: str,
        body: Any,
        buffer: Sequence[Mapping[str, Any]],
        stats: _RunStats,
    ) -> FetchedDocument | None:
        async with self._semaphore:
            try:
                request = self._build_request(url, body, buffer)
                if request.is_query:
                    document = await self._run_query(request)
                else:
                    document = await self.fetcher.fetch(session, request)
            except Exception as exc:
                logger.exception(
                    "Error when fetching url {} with error type {}: {}",
                    url,
                    type(exc).__name__,
                    exc,
                )
                document = None
        if document is None:
            stats.documents_failed += 1
        return document

    async def _run_query(self, request: FetchRequest) -> FetchedDocument:
        if self.query_client is None:
            raise RuntimeError(f"no query client configured for {request.url}")
        if not request.body:
            raise ValueError(f"a query is required in post_body for {request.url}")
        async with self._query_lock:
            rows = await asyncio.to_thread(self.query_client.execute, request.url, request.body)
        logger.debug("Query on {} returned {} rows", request.url, len(rows))
        return FetchedDocument(
            body=json.dumps(rows, ensure_ascii=False, default=str),
            url=request.url,
            status=200,
            requested_url=request.url,
        )

    def _process_document(
        self,
        document: FetchedDocument | None,
        existing: Mapping[str, Any],
        buffer: list[dict[str, Any]],
        stats: _RunStats,
    ) -> None:
        if document is None:
            return
        try:
            self.handle_data(document.body, existing, buffer, stats, response_context(document))
        except Exception as exc:
            logger.exception(
                "Failed processing {} with error type {}: {}",
                document.url,
                type(exc).__name__,
                exc,
            )
            stats.documents_failed += 1

    def handle_data(
        self,
        body: str | bytes,
        existing: Mapping[str, Any],
        buffer: list[dict[str, Any]],
        stats: _RunStats,
        context: Mapping[str, Any] | None = None,
    ) -> None:
        schema = self.options.schema
        document = parse_document(schema, body)

        if schema.full_json_passthrough:
            items = document if isinstance(document, list) else [document]
            for item in items:
                if not isinstance(item, MappingABC):
                    raise ExtractionTypeError(f"expected JSON objects to pass through, got {type(item).__name__}")
            window = self.uniqueness.load_window(1)
            for item in items:
                self._consider(dict(item), window, existing, buffer, stats)
            return

        output = align(schema, lambda rule: resolve(rule, document, schema.document_type))
        window = self.uniqueness.load_window(len(output))
        for row in output:
            result = merge_template(row, output.hidden_keys, self.options.template, self.renderer, context)
            self._consider(result, window, existing, buffer, stats)

    def _consider(
        self,
        result: dict[str, Any],
        window: list,
        existing: Mapping[str, Any],
        buffer: list[dict[str, Any]],
        stats: _RunStats,
    ) -> None:
        stats.tuples_total += 1
        decision = self.uniqueness.store_payload(window, result)
        if not decision.is_new:
            stats.duplicate_total += 1
            return
        logger.info("Storing new parsed result for {}: {}", self.agent_name, result)
        self.aggregator.emit({**existing, **result}, buffer)
        stats.new_total += 1

    def _flush(self, buffer: list[dict[str, Any]]) -> int:
        if not buffer:
            return 0
        expires_at = self._expiration()
        events = self.aggregator.flush(buffer, lambda payload: self.store.create_event(payload, expires_at))
        return len(events)
