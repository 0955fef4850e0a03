"""Turn positioned operations into an ordered operation tuple plus CFG edges.

Front ends record every operation together with an *anchor* (token index or
byte offset) that reflects evaluation order, and blocks (loops, branches)
together with the anchor where their body ends. Ordering, loop depth, loop
body extents and edges are all derived here from those positions.
"""
from __future__ import annotations

from dataclasses import dataclass, replace

from .ir import Branch, ControlFlowEdge, EdgeKind, Loop, Operation


@dataclass(slots=True)
class PendingOp:
    anchor: int
    op: Operation
    block_end: int | None = None


def _loop_depth(anchor: int, loops: list[PendingOp]) -> int:
    return sum(
        1 for loop in loops if loop.block_end is not None and loop.anchor < anchor <= loop.block_end
    )


def finalize_operations(
    pending: list[PendingOp],
) -> tuple[tuple[Operation, ...], tuple[ControlFlowEdge, ...]]:
    ordered = sorted(pending, key=lambda item: item.anchor)
    loops = [item for item in ordered if isinstance(item.op, Loop)]

    ops: list[Operation] = []
    for item in ordered:
        depth = _loop_depth(item.anchor, loops)
        op = item.op
        if depth:
            op = replace(op, loop_depth=depth)
        ops.append(op)

    # Index of the last operation whose anchor falls inside each block.
    block_last: dict[int, int] = {}
    for index, item in enumerate(ordered):
        if item.block_end is None:
            continue
        last = index
        for inner in range(index + 1, len(ordered)):
            if ordered[inner].anchor <= item.block_end:
                last = inner
            else:
                break
        block_last[index] = last
        if isinstance(item.op, Loop):
            ops[index] = replace(ops[index], body_end=last)

    return tuple(ops), _build_edges(ops, block_last)


def _build_edges(ops: list[Operation], block_last: dict[int, int]) -> tuple[ControlFlowEdge, ...]:
    exit_index = len(ops)
    if not ops:
        return (ControlFlowEdge(-1, exit_index, EdgeKind.ENTRY),)

    edges = [ControlFlowEdge(-1, 0, EdgeKind.ENTRY)]
    for index, op in enumerate(ops):
        following = index + 1
        if following < exit_index:
            edges.append(ControlFlowEdge(index, following, EdgeKind.SEQUENTIAL))
        else:
            edges.append(ControlFlowEdge(index, exit_index, EdgeKind.EXIT))

        last = block_last.get(index)
        if isinstance(op, Loop):
            if last is not None and last > index:
                edges.append(ControlFlowEdge(last, index, EdgeKind.LOOP_BACK))
            skip_to = (last if last is not None else index) + 1
            if skip_to != following:
                edges.append(ControlFlowEdge(index, min(skip_to, exit_index), EdgeKind.BRANCH))
        elif isinstance(op, Branch):
            if op.reverts and following != exit_index:
                edges.append(ControlFlowEdge(index, exit_index, EdgeKind.EXIT))
            if last is not None and last + 1 != following:
                edges.append(ControlFlowEdge(index, min(last + 1, exit_index), EdgeKind.BRANCH))
    return tuple(edges)
