"""CSV parser for scanned attendance exports.

Validates the header against the columns the matcher needs, materializes every
row, and applies identifier/cohort normalization. Rows are a tagged union:
``ValidRow`` when an identifier is present, ``MalformedRow`` otherwise. The
original cells are kept verbatim in ``raw_payload`` for issue reporting only.
"""

from __future__ import annotations

import csv
import io
from dataclasses import dataclass, field
from typing import Iterator, Literal, Sequence

from attendance_app.ingest.exceptions import ParseError
from attendance_app.ingest.pipeline.normalize import canonicalize_identifier, coerce_cohort_code

IDENTIFIER_ALIASES: tuple[str, ...] = (
    "uniqueid",
    "unique_id",
    "matric_number",
    "matric_no",
    "matric",
    "student_id",
    "id",
)
COHORT_ALIASES: tuple[str, ...] = (
    "level",
    "level_code",
    "cohort",
    "cohort_code",
)
ENCODINGS: tuple[str, ...] = ("utf-8-sig", "cp1252")
EXTRA_CELLS_KEY = "_extra"


@dataclass(frozen=True)
class ValidRow:
    """A row carrying an identifier; matching decides whether it is usable."""

    sequence_number: int
    source_line: int
    identifier: str
    cohort_code: int | str | None
    raw_payload: dict[str, object | None]
    kind: Literal["valid"] = field(default="valid", init=False)


@dataclass(frozen=True)
class MalformedRow:
    """A row that cannot be matched at all (no identifier)."""

    sequence_number: int
    source_line: int
    problem: str
    cohort_code: int | str | None
    raw_payload: dict[str, object | None]
    kind: Literal["malformed"] = field(default="malformed", init=False)

    @property
    def identifier(self) -> str:
        return ""


RawRow = ValidRow | MalformedRow


@dataclass(frozen=True)
class ParsedFile:
    """Fully materialized parse result; iterating it yields ``RawRow`` items."""

    rows: tuple[RawRow, ...]
    header: tuple[str, ...]
    identifier_column: str
    cohort_column: str
    rows_skipped_blank: int = 0

    def __iter__(self) -> Iterator[RawRow]:
        return iter(self.rows)

    def __len__(self) -> int:
        return len(self.rows)

    def __getitem__(self, index: int) -> RawRow:
        return self.rows[index]

    @property
    def valid_rows(self) -> tuple[ValidRow, ...]:
        return tuple(row for row in self.rows if isinstance(row, ValidRow))

    @property
    def malformed_rows(self) -> tuple[MalformedRow, ...]:
        return tuple(row for row in self.rows if isinstance(row, MalformedRow))


def normalize_header(header: str | None) -> str:
    token = (header or "").strip().lstrip("\ufeff").strip().lower()
    return token.replace(" ", "_").replace("-", "_")


def normalize_identifier(value: object | None) -> str:
    return canonicalize_identifier(value)


def _decode(file_bytes: bytes) -> str:
    for encoding in ENCODINGS:
        try:
            return file_bytes.decode(encoding)
        except UnicodeDecodeError:
            continue
    raise ParseError("File is not valid UTF-8 or Windows-1252 text.")


def _resolve_column(normalized_headers: Sequence[str], aliases: Sequence[str], role: str) -> int:
    for alias in aliases:
        matches = [index for index, header in enumerate(normalized_headers) if header == alias]
        if len(matches) > 1:
            raise ParseError(f"Duplicate {role} column '{alias}' in header.", line_number=1)
        if matches:
            return matches[0]
    raise ParseError(
        f"Missing {role} column. Expected one of: {', '.join(aliases)}.",
        line_number=1,
    )


def _payload_keys(raw_headers: Sequence[str]) -> list[str]:
    keys: list[str] = []
    seen: set[str] = set()
    for index, header in enumerate(raw_headers, start=1):
        key = header.strip().lstrip("\ufeff").strip() or f"column_{index}"
        if key in seen:
            key = f"{key}__{index}"
        seen.add(key)
        keys.append(key)
    return keys


def _row_is_blank(cells: Sequence[str]) -> bool:
    return all(not cell.strip() for cell in cells)


def parse_attendance_file(file_bytes: bytes) -> ParsedFile:
    """
    Parse a raw attendance export into materialized rows.

    Raises:
        ParseError: the file is empty, undecodable, structurally invalid CSV,
            or lacks an identifier or cohort column.
    """

    if not file_bytes or not file_bytes.strip():
        raise ParseError("Attendance file is empty.")

    text = _decode(file_bytes)
    reader = csv.reader(io.StringIO(text, newline=""), strict=True)

    try:
        raw_headers = next(reader, None)
        if raw_headers is None or _row_is_blank(raw_headers):
            raise ParseError("Attendance file has no header row.", line_number=1)

        normalized_headers = [normalize_header(header) for header in raw_headers]
        identifier_index = _resolve_column(normalized_headers, IDENTIFIER_ALIASES, "identifier")
        cohort_index = _resolve_column(normalized_headers, COHORT_ALIASES, "cohort")
        keys = _payload_keys(raw_headers)

        rows: list[RawRow] = []
        rows_skipped_blank = 0
        sequence_number = 0
        for cells in reader:
            if _row_is_blank(cells):
                rows_skipped_blank += 1
                continue
            sequence_number += 1
            payload: dict[str, object | None] = {
                key: (cells[index] if index < len(cells) else None) for index, key in enumerate(keys)
            }
            if len(cells) > len(keys):
                payload[EXTRA_CELLS_KEY] = list(cells[len(keys) :])

            identifier = normalize_identifier(cells[identifier_index] if identifier_index < len(cells) else None)
            cohort_code = coerce_cohort_code(cells[cohort_index] if cohort_index < len(cells) else None)

            if not identifier:
                rows.append(
                    MalformedRow(
                        sequence_number=sequence_number,
                        source_line=reader.line_num,
                        problem="missing identifier",
                        cohort_code=cohort_code,
                        raw_payload=payload,
                    )
                )
                continue

            rows.append(
                ValidRow(
                    sequence_number=sequence_number,
                    source_line=reader.line_num,
                    identifier=identifier,
                    cohort_code=cohort_code,
                    raw_payload=payload,
                )
            )
    except csv.Error as exc:
        raise ParseError(f"Malformed CSV: {exc}", line_number=reader.line_num) from exc

    return ParsedFile(
        rows=tuple(rows),
        header=tuple(keys),
        identifier_column=keys[identifier_index],
        cohort_column=keys[cohort_index],
        rows_skipped_blank=rows_skipped_blank,
    )
