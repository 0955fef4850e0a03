"""Tests for the shared tokenizer and dialect detection."""
import pytest

from stylus_sentinel.errors import ParseError
from stylus_sentinel.model import Dialect, build_model, detect_dialect
from stylus_sentinel.model.lexer import TokenKind, join_tokens, match_forward, tokenize


def test_doc_comments_are_kept_and_plain_comments_dropped():
    tokens = tokenize("/// Adds one.\n// scratch note\nfn add() {} /* block */")

    assert tokens[0].kind is TokenKind.DOC
    assert tokens[0].text == "Adds one."
    assert tokens[1].text == "fn"
    assert (tokens[1].line, tokens[1].column) == (3, 1)
    assert [token.text for token in tokens[1:]] == ["fn", "add", "(", ")", "{", "}"]


def test_block_doc_comment_is_cleaned():
    [token] = tokenize("/**\n * First line.\n * Second line.\n */")

    assert token.kind is TokenKind.DOC
    assert token.text == "First line.\nSecond line."


def test_multi_character_punctuators():
    texts = [token.text for token in tokenize("a += b ** 2; x::y -> z; 0..10")]

    assert texts == ["a", "+=", "b", "**", "2", ";", "x", "::", "y", "->", "z", ";", "0", "..", "10"]


def test_rust_lifetimes_and_solidity_strings():
    rust = tokenize("fn get<'a>(v: &'a str) -> char { 'x' }")
    assert [token.text for token in rust if token.kind is TokenKind.IDENT].count("'a") == 2
    assert any(token.kind is TokenKind.STRING and token.text == "'x'" for token in rust)

    solidity = tokenize("require(ok, 'transfer failed');", single_quoted_strings=True)
    assert solidity[4].kind is TokenKind.STRING
    assert solidity[4].text == "'transfer failed'"


def test_join_tokens_renders_compact_expressions():
    assert join_tokens(tokenize("msg . sender")) == "msg.sender"
    assert join_tokens(tokenize("U256::from(1)")) == "U256::from(1)"
    assert join_tokens(tokenize("a == b")) == "a == b"


def test_match_forward_finds_closing_token():
    tokens = tokenize("f(a, (b), c) + 1")

    assert tokens[match_forward(tokens, 1, "(", ")")].text == ")"
    assert match_forward(tokenize("f(a"), 1, "(", ")") == -1


def test_detect_dialect():
    assert detect_dialect(b"pragma solidity ^0.8.0;", "pragma solidity ^0.8.0;") is Dialect.SOLIDITY
    assert detect_dialect(b"#[entrypoint]", "#[entrypoint]") is Dialect.STYLUS_RUST
    assert detect_dialect(b"\x00asm\x01\x00\x00\x00", None) is Dialect.WASM


@pytest.mark.parametrize("source", [b"", b"   \n\t"])
def test_empty_input_is_rejected(source):
    with pytest.raises(ParseError, match="empty input"):
        build_model(source)


def test_undecodable_input_is_rejected():
    with pytest.raises(ParseError, match="neither a WASM module nor UTF-8"):
        build_model(b"\xff\xfe\x00garbage")


def test_unrecognised_dialect_is_rejected():
    with pytest.raises(ParseError, match="unrecognised contract dialect"):
        build_model(b"hello world")
