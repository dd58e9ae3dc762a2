"""Infrastructure adapters for sitewatch."""

from src.sitewatch.infrastructure.event_store_sqlite import SQLiteEventStore
from src.sitewatch.infrastructure.http_client import HttpDocumentClient
from src.sitewatch.infrastructure.jinja_renderer import JinjaTemplateRenderer
from src.sitewatch.infrastructure.query_client import SqlQueryClient
from src.sitewatch.infrastructure.raw_sink import RawFetchJsonlSink

__all__ = [
    "HttpDocumentClient",
    "JinjaTemplateRenderer",
    "RawFetchJsonlSink",
    "SQLiteEventStore",
    "SqlQueryClient",
]
