"""Entry point turning raw contract bytes into a :class:`ContractModel`."""
from __future__ import annotations

import logging
import re

from ..errors import ParseError
from .ir import ContractModel, Dialect, DialectHint, SourceLocation
from .rust import RustFrontEnd
from .solidity import SolidityFrontEnd
from .wasm import WASM_MAGIC, WasmFrontEnd

logger = logging.getLogger(__name__)

_SOLIDITY_MARKERS = re.compile(r"pragma\s+solidity\b|^\s*(?:abstract\s+)?contract\s+\w+[^{;]*\{", re.MULTILINE)
_RUST_MARKERS = re.compile(r"\bfn\s+\w+|\bimpl\b|sol_storage!|#\[\s*(?:storage|entrypoint|public|external)\b")


def detect_dialect(source: bytes, text: str | None) -> Dialect:
    if source.startswith(WASM_MAGIC):
        return Dialect.WASM
    if text is None:
        raise ParseError("input is neither a WASM module nor UTF-8 source", SourceLocation(offset=0))
    if _SOLIDITY_MARKERS.search(text):
        return Dialect.SOLIDITY
    if _RUST_MARKERS.search(text):
        return Dialect.STYLUS_RUST
    raise ParseError("unrecognised contract dialect", SourceLocation(1, 1))


def _decode(source: bytes) -> str:
    try:
        return source.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise ParseError(f"undecodable UTF-8 input ({exc.reason} at byte {exc.start})") from exc


def build_model(
    source: bytes,
    dialect_hint: DialectHint = DialectHint.AUTO,
    *,
    name: str | None = None,
) -> ContractModel:
    """Build the immutable IR for one contract.

    Raises :class:`ParseError` for empty or undecodable input, an
    unrecognisable dialect, or when no function could be recovered. Smaller
    problems are recorded as diagnostics on the returned model.
    """
    if not source or not source.strip():
        raise ParseError("empty input", SourceLocation(1, 1))

    hint = DialectHint(dialect_hint)
    if hint is DialectHint.AUTO:
        text = None
        if not source.startswith(WASM_MAGIC):
            try:
                text = source.decode("utf-8")
            except UnicodeDecodeError:
                text = None
        dialect = detect_dialect(source, text)
    else:
        dialect = Dialect(hint.value)

    logger.debug("Building %s model (%d bytes)", dialect, len(source))
    if dialect is Dialect.WASM:
        return WasmFrontEnd(source, name=name).build()
    text = _decode(source)
    if dialect is Dialect.SOLIDITY:
        return SolidityFrontEnd(text, name=name, size_bytes=len(source)).build()
    return RustFrontEnd(text, name=name, size_bytes=len(source)).build()
