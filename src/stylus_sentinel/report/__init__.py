"""Report aggregation and rendering."""

from .aggregator import Report, aggregate, dedupe, sort_findings

__all__ = ["Report", "aggregate", "dedupe", "sort_findings"]
