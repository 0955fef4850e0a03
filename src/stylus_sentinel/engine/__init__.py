"""Analysis pipeline."""

from .pipeline import BatchResult, analyze, analyze_many, analyze_source, run_detectors

__all__ = ["BatchResult", "analyze", "analyze_many", "analyze_source", "run_detectors"]
