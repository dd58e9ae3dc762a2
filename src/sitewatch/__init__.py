"""Watch web pages, feeds and APIs and turn what changed into events."""

from src.sitewatch.check import receive_events, receive_events_async, run_check, run_check_async
from src.sitewatch.domain.models import CheckSummary

__all__ = [
    "CheckSummary",
    "receive_events",
    "receive_events_async",
    "run_check",
    "run_check_async",
]
