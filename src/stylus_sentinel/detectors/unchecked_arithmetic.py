"""Unchecked integer arithmetic detector.

An operation is reported only when z3 can find operand values of the
declared width that overflow (or underflow) the result. Literal operands are
fixed to their value, so ``x + 0`` or ``1 * 2`` never fire.
"""
from __future__ import annotations

from functools import lru_cache

import z3

from ..model.body import literal_value
from ..model.ir import ArithmeticOp, ContractModel
from .base import BaseDetector, Category, DetectionContext, Finding, Severity

_SOLVER_TIMEOUT_MS = 2_000
_OVERFLOW_OPERATORS = frozenset({"+", "-", "*", "**"})


@lru_cache(maxsize=2048)
def overflow_feasible(operator: str, bits: int, left: int | None, right: int | None) -> bool:
    """Whether ``left <operator> right`` can leave the unsigned ``bits``-wide range."""
    limit = 1 << bits
    if (left is not None and left >= limit) or (right is not None and right >= limit):
        return True
    if operator == "**":
        if left is not None and left in (0, 1):
            return False
        if right is not None and right in (0, 1):
            return False
        if left is not None and right is not None:
            return left**right >= limit
        return True

    ctx = z3.Context()
    a = z3.BitVec("a", bits, ctx=ctx)
    b = z3.BitVec("b", bits, ctx=ctx)
    solver = z3.Solver(ctx=ctx)
    solver.set("timeout", _SOLVER_TIMEOUT_MS)
    if left is not None:
        solver.add(a == z3.BitVecVal(left, bits, ctx=ctx))
    if right is not None:
        solver.add(b == z3.BitVecVal(right, bits, ctx=ctx))
    if operator == "+":
        solver.add(z3.ULT(a + b, a))
    elif operator == "-":
        solver.add(z3.ULT(a, b))
    else:
        wide = z3.ZeroExt(bits, a) * z3.ZeroExt(bits, b)
        solver.add(z3.UGT(wide, z3.BitVecVal(limit - 1, 2 * bits, ctx=ctx)))
    # unknown (timeout) is reported as feasible.
    return solver.check() != z3.unsat


class UncheckedArithmeticDetector(BaseDetector):
    name = "unchecked_arithmetic"
    description = "Detects unchecked integer arithmetic that can overflow or underflow"
    category = Category.SECURITY
    rule_id = "SEC-ARITH-OVERFLOW"
    severity = Severity.HIGH
    title = "Unchecked Arithmetic Overflow"
    remediation = (
        "Use checked arithmetic (checked_add/checked_sub, Solidity >=0.8 outside unchecked blocks) "
        "or validate operand bounds before the operation."
    )

    def inspect(self, model: ContractModel, context: DetectionContext | None = None) -> list[Finding]:
        findings: list[Finding] = []
        for function in model.functions:
            for _, op in function.ops_of(ArithmeticOp):
                if op.checked or op.wrapping or op.operator not in _OVERFLOW_OPERATORS:
                    continue
                left = literal_value(op.left)
                right = literal_value(op.right)
                if not overflow_feasible(op.operator, op.operand_bits, left, right):
                    continue
                sinks = []
                if op.flows_to_storage:
                    sinks.append("written to storage")
                if op.used_as_index:
                    sinks.append("used as an index")
                kind = "underflow" if op.operator == "-" else "overflow"
                description = f"'{op.left} {op.operator} {op.right}' can {kind} {op.operand_bits}-bit operands"
                description += f" and the result is {' and '.join(sinks)}." if sinks else "."
                findings.append(
                    self.finding(
                        description=description,
                        location=op.location,
                        function=function,
                        partial=not sinks,
                        tags=("SWC-101", f"uint{op.operand_bits}"),
                    )
                )
        return self.dedupe_findings(findings)
