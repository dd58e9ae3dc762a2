"""Extraction, alignment and deduplication rules, free of I/O."""

from src.sitewatch.domain.errors import (
    ExtractionTypeError,
    FetchError,
    ModeConfigurationError,
    NoTupleSizeError,
    SchemaError,
    SiteWatchError,
    UnevenSizeError,
)
from src.sitewatch.domain.models import (
    CheckSummary,
    DocumentType,
    ExtractionKind,
    ExtractionRule,
    ExtractionSchema,
    RecentEvent,
)
from src.sitewatch.domain.options import AgentOptions, build_agent_options

__all__ = [
    "AgentOptions",
    "CheckSummary",
    "DocumentType",
    "ExtractionKind",
    "ExtractionRule",
    "ExtractionSchema",
    "ExtractionTypeError",
    "FetchError",
    "ModeConfigurationError",
    "NoTupleSizeError",
    "RecentEvent",
    "SchemaError",
    "SiteWatchError",
    "UnevenSizeError",
    "build_agent_options",
]
