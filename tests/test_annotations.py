import pytest

from docwatch.errors import AnnotationParseError
from docwatch.workflows.annotations import TagOccurrence, decode_source, extract_occurrences

TS_SOURCE = """import { api } from "./api";

/**
 * Wraps the payments endpoint.
 * @ExternalDocSource {3fa9c1-body,nonce} https://docs.example.com/payments
 */
export function pay() {}

/** @ExternalDocSource {} https://docs.example.com/refunds */
export function refund() {}
"""


def test_extracts_docblock_annotations_in_order():
    occurrences = extract_occurrences(TS_SOURCE, "src/payments.ts")

    assert occurrences == [
        TagOccurrence(path="src/payments.ts", line=5, source="https://docs.example.com/payments", stored="3fa9c1-body,nonce"),
        TagOccurrence(path="src/payments.ts", line=9, source="https://docs.example.com/refunds", stored=""),
    ]
    assert occurrences[0].base_name == "payments.ts"


def test_hash_and_slash_comment_leaders():
    text = (
        "# @ExternalDocSource {abc123} https://example.com/a\n"
        "    // @ExternalDocSource https://example.com/b\n"
    )

    occurrences = extract_occurrences(text, "tool.py")

    assert [(o.line, o.source, o.stored) for o in occurrences] == [
        (1, "https://example.com/a", "abc123"),
        (2, "https://example.com/b", ""),
    ]


def test_ignores_lookalike_tags_and_prose():
    text = (
        " * @ExternalDocSources {x} https://example.com/nope\n"
        "see @ExternalDocSource {x} https://example.com/not-a-comment\n"
        ' const tag = "@ExternalDocSource";\n'
    )

    assert extract_occurrences(text, "a.ts") == []


def test_empty_file_has_no_occurrences():
    assert extract_occurrences("", "empty.ts") == []


def test_missing_url_raises_with_location():
    with pytest.raises(AnnotationParseError) as excinfo:
        extract_occurrences("line one\n * @ExternalDocSource {abc123}\n", "bad.ts")

    assert excinfo.value.path == "bad.ts"
    assert excinfo.value.line == 2


def test_unterminated_brace_raises():
    with pytest.raises(AnnotationParseError):
        extract_occurrences(" * @ExternalDocSource {abc123 https://example.com\n", "bad.ts")


def test_decode_source_rejects_invalid_utf8():
    assert decode_source("café".encode("utf-8"), "ok.ts") == "café"
    with pytest.raises(AnnotationParseError, match="not readable"):
        decode_source(b"\xff\xfe\xfa", "binary.bin")
