"""Tests for CsvParser: required columns, row skipping, base64 and header normalisation."""

import base64
import json

import pytest

from fakes import make_csv
from services.csv_ingest.CsvParser import CsvParser
from shared.errors import ParseError


@pytest.fixture
def parser(helper_config):
    return CsvParser(helper_config)


def test_parses_all_rows_in_order(parser):
    data = make_csv([(f"C{i}", f"text {i}") for i in range(10)])
    result = parser.parse(data, file_name="products.csv", namespace="shop")
    assert [r.code for r in result.records] == [f"C{i}" for i in range(10)]
    assert all(r.file_name == "products.csv" and r.namespace == "shop" for r in result.records)
    assert result.skipped_rows == 0


def test_row_with_empty_code_is_skipped_with_one_warning(parser, caplog):
    rows = [(f"C{i}", f"text {i}") for i in range(10)]
    rows[4] = ("", "no code here")
    with caplog.at_level("WARNING"):
        result = parser.parse(make_csv(rows), file_name="f.csv")
    assert len(result.records) == 9
    assert result.skipped_rows == 1
    warnings = [r for r in caplog.records if r.levelname == "WARNING" and "missing code" in r.getMessage()]
    assert len(warnings) == 1


def test_row_without_metadata_small_is_skipped(parser):
    result = parser.parse(make_csv([("A", "x"), ("B", "")]), file_name="f.csv")
    assert [r.code for r in result.records] == ["A"]
    assert result.skipped_rows == 1
    assert "missing metadata_small" in result.warnings[0]


def test_duplicate_code_keeps_first_occurrence(parser):
    result = parser.parse(make_csv([("A", "first"), ("A", "second"), ("B", "b")]), file_name="f.csv")
    assert [(r.code, r.metadata_small) for r in result.records] == [("A", "first"), ("B", "b")]
    assert result.duplicate_codes == ["A"]


def test_missing_required_column_raises(parser):
    with pytest.raises(ParseError):
        parser.parse(b"code;other\nA;x\n", file_name="f.csv")


def test_empty_file_raises(parser):
    with pytest.raises(ParseError):
        parser.parse(b"\n\n", file_name="f.csv")


def test_base64_fields_are_decoded_and_json_parsed(parser):
    small = base64.b64encode("Hello wörld".encode("utf-8")).decode("ascii")
    big = base64.b64encode(json.dumps({"price": 12, "tags": ["a"]}).encode("utf-8")).decode("ascii")
    data = f"code;metadata_small;metadata_big_1\nA;{small};{big}\n".encode("utf-8")
    record = parser.parse(data, file_name="f.csv").records[0]
    assert record.metadata_small == "Hello wörld"
    assert record.metadata_big_1 == {"price": 12, "tags": ["a"]}
    assert record.metadata_big_2 is None


def test_plain_text_that_looks_like_base64_is_kept(parser):
    data = b"code;metadata_small\nA;abcd\n"
    # "abcd" decodes to non-printable bytes
    assert parser.parse(data, file_name="f.csv").records[0].metadata_small == "abcd"


def test_header_delimiter_is_aligned_with_rows(parser, caplog):
    data = b"code,metadata_small\nA;first\nB;second\n"
    with caplog.at_level("WARNING"):
        result = parser.parse(data, file_name="f.csv")
    assert [r.metadata_small for r in result.records] == ["first", "second"]
    assert any("normalising the header" in r.getMessage() for r in caplog.records)


def test_header_is_case_insensitive_and_bom_is_stripped(parser):
    data = "\ufeffCODE ; Metadata_Small\nA;x\n".encode("utf-8")
    assert parser.parse(data, file_name="f.csv").records[0].code == "A"


def test_latin1_fallback(parser):
    data = "code;metadata_small\nA;café\n".encode("latin-1")
    assert parser.parse(data, file_name="f.csv").records[0].metadata_small == "café"


def test_configured_comma_delimiter(helper_config, monkeypatch):
    monkeypatch.setenv("CSV_DELIMITER", ",")
    parser = CsvParser(helper_config)
    result = parser.parse(make_csv([("A", "x")], delimiter=","), file_name="f.csv")
    assert result.records[0].code == "A"
