from .builder import build_model, detect_dialect
from .ir import (
    DYNAMIC_SLOT,
    AccessPattern,
    ArithmeticOp,
    BoundKind,
    Branch,
    CallKind,
    ContractModel,
    ControlFlowEdge,
    Diagnostic,
    Dialect,
    DialectHint,
    EdgeKind,
    Emit,
    EnvRead,
    ExternalCall,
    ExternalCallSite,
    Function,
    InternalCall,
    Loop,
    MemoryAlloc,
    Modifier,
    ModifierKind,
    Mutability,
    OpaqueOp,
    OpKind,
    Operation,
    Parameter,
    ResultHandling,
    SourceLocation,
    StorageRead,
    StorageSlot,
    StorageWrite,
    TargetOrigin,
    TypeClass,
    UnsafeCode,
    Visibility,
)

__all__ = [
    "DYNAMIC_SLOT",
    "AccessPattern",
    "ArithmeticOp",
    "BoundKind",
    "Branch",
    "CallKind",
    "ContractModel",
    "ControlFlowEdge",
    "Diagnostic",
    "Dialect",
    "DialectHint",
    "EdgeKind",
    "Emit",
    "EnvRead",
    "ExternalCall",
    "ExternalCallSite",
    "Function",
    "InternalCall",
    "Loop",
    "MemoryAlloc",
    "Modifier",
    "ModifierKind",
    "Mutability",
    "OpKind",
    "OpaqueOp",
    "Operation",
    "Parameter",
    "ResultHandling",
    "SourceLocation",
    "StorageRead",
    "StorageSlot",
    "StorageWrite",
    "TargetOrigin",
    "TypeClass",
    "UnsafeCode",
    "Visibility",
    "build_model",
    "detect_dialect",
]
