from __future__ import annotations

import pytest

from attendance_app.ingest.exceptions import ParseError
from attendance_app.ingest.pipeline.parser import (
    EXTRA_CELLS_KEY,
    MalformedRow,
    ValidRow,
    normalize_header,
    parse_attendance_file,
)


def test_parse_resolves_columns_and_normalizes_rows(make_csv):
    parsed = parse_attendance_file(make_csv([[" CS/100/01 ", "Ada", "100"], ["cs/100/02", "Bola", "100.0"]]))

    assert parsed.identifier_column == "UniqueID"
    assert parsed.cohort_column == "Level"
    assert parsed.header == ("UniqueID", "Name", "Level")
    assert len(parsed) == 2

    first = parsed[0]
    assert isinstance(first, ValidRow)
    assert first.kind == "valid"
    assert first.identifier == "cs/100/01"
    assert first.cohort_code == 100
    assert first.sequence_number == 1
    assert first.source_line == 2
    assert first.raw_payload == {"UniqueID": " CS/100/01 ", "Name": "Ada", "Level": "100"}
    assert parsed[1].cohort_code == 100


def test_parse_accepts_header_aliases():
    parsed = parse_attendance_file(b"Matric Number,Level Code\nCS/200/01,200\n")

    assert parsed.identifier_column == "Matric Number"
    assert parsed.cohort_column == "Level Code"
    assert parsed[0].identifier == "cs/200/01"
    assert parsed[0].cohort_code == 200


def test_missing_identifier_becomes_malformed_row(make_csv):
    parsed = parse_attendance_file(make_csv([["", "Ghost", "100"], ["CS/100/01", "Ada", "100"]]))

    assert len(parsed.malformed_rows) == 1
    assert len(parsed.valid_rows) == 1
    malformed = parsed.malformed_rows[0]
    assert isinstance(malformed, MalformedRow)
    assert malformed.kind == "malformed"
    assert malformed.identifier == ""
    assert malformed.problem == "missing identifier"
    assert malformed.raw_payload["Name"] == "Ghost"


def test_blank_rows_are_skipped_and_counted():
    parsed = parse_attendance_file(b"UniqueID,Level\nCS/100/01,100\n,\n\n  ,  \nCS/100/02,100\n")

    assert [row.identifier for row in parsed] == ["cs/100/01", "cs/100/02"]
    assert parsed.rows_skipped_blank == 3
    assert [row.sequence_number for row in parsed] == [1, 2]


def test_short_and_long_rows_keep_their_cells():
    parsed = parse_attendance_file(b"UniqueID,Name,Level\nCS/100/01\nCS/100/02,Bola,100,late,gate-b\n")

    short, long = parsed.rows
    assert short.cohort_code is None
    assert short.raw_payload == {"UniqueID": "CS/100/01", "Name": None, "Level": None}
    assert long.raw_payload[EXTRA_CELLS_KEY] == ["late", "gate-b"]


def test_utf8_bom_is_stripped_from_header():
    parsed = parse_attendance_file("\ufeffUniqueID,Level\nCS/100/01,100\n".encode("utf-8"))

    assert parsed.identifier_column == "UniqueID"
    assert parsed[0].identifier == "cs/100/01"


def test_windows_1252_fallback():
    parsed = parse_attendance_file(b"UniqueID,Name,Level\nCS/100/01,Ren\xe9e,100\n")

    assert parsed[0].raw_payload["Name"] == "Renée"


def test_blank_and_duplicate_header_cells_get_distinct_keys():
    parsed = parse_attendance_file(b"UniqueID,,Level,Note,Note\nCS/100/01,x,100,a,b\n")

    assert parsed.header == ("UniqueID", "column_2", "Level", "Note", "Note__5")
    assert parsed[0].raw_payload["Note__5"] == "b"


@pytest.mark.parametrize("payload", [b"", b"   \n\n"])
def test_empty_file_is_rejected(payload):
    with pytest.raises(ParseError, match="empty"):
        parse_attendance_file(payload)


def test_blank_header_row_is_rejected():
    with pytest.raises(ParseError, match="no header row"):
        parse_attendance_file(b",,\nCS/100/01,100,x\n")


def test_missing_cohort_column_is_rejected():
    with pytest.raises(ParseError, match="Missing cohort column") as excinfo:
        parse_attendance_file(b"UniqueID,Name\nCS/100/01,Ada\n")
    assert excinfo.value.line_number == 1


def test_missing_identifier_column_is_rejected():
    with pytest.raises(ParseError, match="Missing identifier column"):
        parse_attendance_file(b"Name,Level\nAda,100\n")


def test_duplicate_identifier_column_is_rejected():
    with pytest.raises(ParseError, match="Duplicate identifier column"):
        parse_attendance_file(b"id,ID,Level\nCS/100/01,CS/100/01,100\n")


def test_structurally_broken_csv_reports_line():
    with pytest.raises(ParseError, match="Malformed CSV") as excinfo:
        parse_attendance_file(b'UniqueID,Level\nCS/100/01,100\n"CS/100/02"x,100\n')
    assert excinfo.value.line_number == 3


def test_normalize_header():
    assert normalize_header("  Matric-Number ") == "matric_number"
    assert normalize_header(None) == ""
