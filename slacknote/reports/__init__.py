"""Incident report detection, extraction and logging."""

from slacknote.reports.classifier import classify_report, looks_like_report
from slacknote.reports.routing import resolve_route

__all__ = ["classify_report", "looks_like_report", "resolve_route"]
