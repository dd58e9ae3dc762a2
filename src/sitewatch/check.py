from __future__ import annotations
import asyncio
from dataclasses import replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Mapping, Sequence

from src.config.settings import get_settings
from src.sitewatch.application.workflows.check_documents import CheckDocumentsWorkflow, CheckWorkflowConfig
from src.sitewatch.domain.models import CheckSummary
from src.sitewatch.domain.options import AgentOptions, build_agent_options
from src.sitewatch.infrastructure.event_store_sqlite import SQLiteEventStore
from src.sitewatch.infrastructure.http_client import HttpDocumentClient
from src.sitewatch.infrastructure.jinja_renderer import JinjaTemplateRenderer
from src.sitewatch.infrastructure.query_client import SqlQueryClient
from src.sitewatch.infrastructure.raw_sink import RawFetchJsonlSink


class _Runtime:
    def __init__(
        self,
        options: Mapping[str, Any],
        agent_name: str,
        db_path: str | Path | None,
        raw_dir: str | Path | None,
        workflow_config: CheckWorkflowConfig | None,
        show_progress: bool,
    ) -> None:
        settings = get_settings()
        agent_options: AgentOptions = build_agent_options(options)
        run_id = _build_run_id()

        self.raw_sink = RawFetchJsonlSink(Path(raw_dir or settings.raw_dir), agent_name=agent_name, run_id=run_id)
        self.store = SQLiteEventStore(Path(db_path or settings.db_path), agent=agent_name)
        self.query_client = SqlQueryClient()
        fetcher = HttpDocumentClient(
            document_type=agent_options.schema.document_type,
            success_codes=agent_options.http_success_codes,
            headers=agent_options.headers,
            user_agent=agent_options.user_agent or settings.user_agent,
            basic_auth=agent_options.basic_auth,
            disable_ssl_verification=agent_options.disable_ssl_verification,
            force_encoding=agent_options.force_encoding,
            raw_sink=self.raw_sink,
        )
        config = workflow_config or CheckWorkflowConfig(
            fetch_concurrency=settings.fetch_concurrency,
            event_ttl_days=settings.event_ttl_days,
        )
        try:
            self.workflow = CheckDocumentsWorkflow(
                options=agent_options,
                fetcher=fetcher,
                store=self.store,
                renderer=JinjaTemplateRenderer(),
                query_client=self.query_client,
                config=replace(config, show_progress=show_progress),
                agent_name=agent_name,
            )
        except Exception:
            self.close()
            raise

    def close(self) -> None:
        self.raw_sink.close()
        self.store.close()
        self.query_client.close()


async def run_check_async(
    options: Mapping[str, Any],
    *,
    agent_name: str = "sitewatch",
    db_path: str | Path | None = None,
    raw_dir: str | Path | None = None,
    workflow_config: CheckWorkflowConfig | None = None,
    show_progress: bool = False,
) -> CheckSummary:
    runtime = _Runtime(options, agent_name, db_path, raw_dir, workflow_config, show_progress)
    try:
        return await runtime.workflow.check()
    finally:
        runtime.close()


def run_check(
    options: Mapping[str, Any],
    *,
    agent_name: str = "sitewatch",
    db_path: str | Path | None = None,
    raw_dir: str | Path | None = None,
    workflow_config: CheckWorkflowConfig | None = None,
    show_progress: bool = False,
) -> CheckSummary:
    return asyncio.run(
        run_check_async(
            options,
            agent_name=agent_name,
            db_path=db_path,
            raw_dir=raw_dir,
            workflow_config=workflow_config,
            show_progress=show_progress,
        )
    )


async def receive_events_async(
    options: Mapping[str, Any],
    incoming_payloads: Sequence[Mapping[str, Any]],
    *,
    agent_name: str = "sitewatch",
    db_path: str | Path | None = None,
    raw_dir: str | Path | None = None,
    workflow_config: CheckWorkflowConfig | None = None,
) -> CheckSummary:
    runtime = _Runtime(options, agent_name, db_path, raw_dir, workflow_config, show_progress=False)
    try:
        return await runtime.workflow.receive(incoming_payloads)
    finally:
        runtime.close()


def receive_events(
    options: Mapping[str, Any],
    incoming_payloads: Sequence[Mapping[str, Any]],
    *,
    agent_name: str = "sitewatch",
    db_path: str | Path | None = None,
    raw_dir: str | Path | None = None,
    workflow_config: CheckWorkflowConfig | None = None,
) -> CheckSummary:
    return asyncio.run(
        receive_events_async(
            options,
            incoming_payloads,
            agent_name=agent_name,
            db_path=db_path,
            raw_dir=raw_dir,
            workflow_config=workflow_config,
        )
    )


def _build_run_id() -> str:
    return datetime.now(timezone.utc).strftime("check_%Y%m%dT%H%M%S%fZ")
