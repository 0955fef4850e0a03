"""Security, gas and quality detectors."""

from types import MappingProxyType

from .access_control import AccessControlDetector
from .base import DEFAULT_CODE_SIZE_LIMIT, SEVERITY_RANK, BaseDetector, Category, DetectionContext, Finding, Severity
from .code_size import CodeSizeDetector
from .complexity import ComplexityDetector
from .documentation import DocumentationDetector
from .error_handling import ErrorHandlingDetector
from .gas_threshold import GasThresholdDetector
from .l2_timing import L2TimingDetector
from .missing_events import MissingEventsDetector
from .naming import NamingDetector
from .redundant_calls import RedundantCallsDetector
from .reentrancy import ReentrancyDetector
from .storage_caching import StorageCachingDetector
from .test_coverage import TestCoverageDetector
from .trust_boundary import TrustBoundaryDetector
from .unbounded_loops import UnboundedLoopsDetector
from .unchecked_arithmetic import UncheckedArithmeticDetector
from .unestimated_operations import UnestimatedOperationsDetector
from .unsafe_code import UnsafeCodeDetector
from .unsized_allocation import UnsizedAllocationDetector

DEFAULT_DETECTORS: tuple[type[BaseDetector], ...] = (
    ReentrancyDetector,
    AccessControlDetector,
    UncheckedArithmeticDetector,
    TrustBoundaryDetector,
    UnsafeCodeDetector,
    L2TimingDetector,
    GasThresholdDetector,
    StorageCachingDetector,
    RedundantCallsDetector,
    UnboundedLoopsDetector,
    UnestimatedOperationsDetector,
    UnsizedAllocationDetector,
    CodeSizeDetector,
    DocumentationDetector,
    ComplexityDetector,
    ErrorHandlingDetector,
    NamingDetector,
    MissingEventsDetector,
    TestCoverageDetector,
)

ALL_DETECTORS: MappingProxyType[str, type[BaseDetector]] = MappingProxyType(
    {detector.name: detector for detector in DEFAULT_DETECTORS}
)

__all__ = [
    "ALL_DETECTORS",
    "DEFAULT_CODE_SIZE_LIMIT",
    "DEFAULT_DETECTORS",
    "SEVERITY_RANK",
    "BaseDetector",
    "Category",
    "DetectionContext",
    "Finding",
    "Severity",
]
