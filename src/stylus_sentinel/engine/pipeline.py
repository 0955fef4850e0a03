"""Detector pipeline: cost estimation, concurrent detection, classification and aggregation."""
from __future__ import annotations

import logging
import time
from collections.abc import Iterable, Mapping, Sequence
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass

from ..config import AnalysisConfig
from ..cost.estimate import estimate_costs
from ..detectors.base import BaseDetector, DetectionContext, Finding
from ..errors import DetectorTimeout, ParseError
from ..model import ContractModel, Diagnostic, DialectHint, build_model
from ..report.aggregator import Report, aggregate
from ..scoring.correlation import correlate
from ..scoring.scorer import score
from ..scoring.severity import classify

__all__ = ["BatchResult", "analyze", "analyze_many", "analyze_source", "run_detectors"]

logger = logging.getLogger(__name__)


def _timed(detector: BaseDetector, model: ContractModel, context: DetectionContext) -> list[Finding]:
    started = time.perf_counter()
    findings = detector.inspect(model, context)
    logger.debug(
        "Detector %s produced %d finding(s) in %.1f ms",
        detector.name,
        len(findings),
        (time.perf_counter() - started) * 1000,
    )
    return findings


def run_detectors(
    model: ContractModel,
    detectors: Sequence[BaseDetector],
    context: DetectionContext,
    *,
    timeout: float | None = None,
    max_workers: int = 4,
) -> tuple[list[Finding], list[Diagnostic]]:
    """Run *detectors* concurrently and collect their findings in detector order.

    Detectors still running when *timeout* expires, and detectors that raise,
    are reported as diagnostics; everything that finished is kept.
    """
    findings: list[Finding] = []
    diagnostics: list[Diagnostic] = []
    if not detectors:
        return findings, diagnostics

    executor = ThreadPoolExecutor(max_workers=min(max_workers, len(detectors)), thread_name_prefix="detector")
    try:
        submitted = [(detector, executor.submit(_timed, detector, model, context)) for detector in detectors]
        _, pending = wait([future for _, future in submitted], timeout=timeout)
        for detector, future in submitted:
            if future in pending:
                future.cancel()
                error = DetectorTimeout(detector.name, timeout or 0.0)
                logger.warning("%s", error)
                diagnostics.append(Diagnostic(None, str(error), source=f"detector:{detector.name}"))
                continue
            exc = future.exception()
            if exc is not None:
                logger.warning("Detector %s failed: %s", detector.name, exc, exc_info=exc)
                diagnostics.append(
                    Diagnostic(None, f"Detector '{detector.name}' failed: {exc}", source=f"detector:{detector.name}")
                )
                continue
            findings.extend(future.result())
    finally:
        # A detector stuck past the deadline keeps its worker; do not block on it.
        executor.shutdown(wait=False, cancel_futures=True)
    return findings, diagnostics


def analyze(model: ContractModel, config: AnalysisConfig | None = None) -> Report:
    """Analyse one contract model and return its report.

    Raises :class:`~stylus_sentinel.errors.ConfigurationError` for an invalid
    *config* before any work is done.
    """
    config = (config or AnalysisConfig()).validate()
    costs = estimate_costs(
        model,
        config.cost_table,
        carbon_per_gas=config.carbon_per_gas,
        energy_per_gas=config.energy_per_gas,
    )
    context = DetectionContext(
        costs=costs,
        gas_cost_threshold=config.gas_cost_threshold,
        complexity_threshold=config.complexity_threshold,
        code_size_limit=config.code_size_limit,
        cost_table=config.cost_table,
    )

    raw: list[Finding] = []
    diagnostics: list[Diagnostic] = []
    if model.functions:
        detectors = [detector_class() for detector_class in config.active_detectors()]
        logger.debug("Running %d detector(s) on %s", len(detectors), model.name)
        raw, diagnostics = run_detectors(
            model,
            detectors,
            context,
            timeout=config.timeout,
            max_workers=config.max_workers,
        )
    else:
        logger.debug("%s has no functions; skipping detectors", model.name)

    classified = [classify(finding) for finding in correlate(raw)]
    scores = score(model, classified, complexity_threshold=config.complexity_threshold)
    return aggregate(
        model,
        classified,
        costs,
        scores,
        severity_floor=config.severity_floor,
        diagnostics=diagnostics,
    )


def analyze_source(
    source: bytes,
    config: AnalysisConfig | None = None,
    *,
    dialect_hint: DialectHint = DialectHint.AUTO,
    name: str | None = None,
) -> Report:
    """Build the model for *source* and analyse it."""
    config = (config or AnalysisConfig()).validate()
    return analyze(build_model(source, dialect_hint, name=name), config)


@dataclass(slots=True, frozen=True)
class BatchResult:
    name: str
    report: Report | None = None
    error: ParseError | None = None

    @property
    def ok(self) -> bool:
        return self.report is not None


def analyze_many(
    sources: Mapping[str, bytes] | Iterable[tuple[str, bytes]],
    config: AnalysisConfig | None = None,
    *,
    dialect_hint: DialectHint = DialectHint.AUTO,
) -> list[BatchResult]:
    """Analyse several contracts concurrently; results follow input order.

    A contract that cannot be parsed yields a :class:`BatchResult` carrying
    the :class:`ParseError` instead of aborting the batch.
    """
    config = (config or AnalysisConfig()).validate()
    items = list(sources.items()) if isinstance(sources, Mapping) else list(sources)
    if not items:
        return []

    def run(name: str, source: bytes) -> BatchResult:
        try:
            report = analyze_source(source, config, dialect_hint=dialect_hint, name=name)
        except ParseError as exc:
            logger.warning("Skipping %s: %s", name, exc)
            return BatchResult(name, error=exc)
        return BatchResult(name, report=report)

    with ThreadPoolExecutor(max_workers=min(config.max_workers, len(items)), thread_name_prefix="contract") as executor:
        futures = [executor.submit(run, name, source) for name, source in items]
        return [future.result() for future in futures]
