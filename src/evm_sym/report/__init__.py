"""Report sinks."""

from __future__ import annotations

from .generator import ReportGenerator

__all__ = ["ReportGenerator"]
