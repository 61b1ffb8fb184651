"""CSV reading and writing for dataclasses whose fields name their column.

A field takes part when its metadata holds a ``"csv"`` entry naming the
column; a name of ``"-"`` or no entry at all leaves the field out.
"""

from __future__ import annotations

import csv
import dataclasses
import io
from collections.abc import Iterable
from decimal import Decimal, InvalidOperation
from typing import IO, Any, Callable, TypeVar

T = TypeVar("T")


class CsvError(ValueError):
    """Raised when CSV input cannot be read into records."""


def _csv_field_objects(record_type: type) -> list[dataclasses.Field]:
    """Return the dataclass fields of ``record_type`` that map to a column."""
    if not (isinstance(record_type, type) and dataclasses.is_dataclass(record_type)):
        return []
    result = []
    for f in dataclasses.fields(record_type):
        column = f.metadata.get("csv", "")
        if column and column != "-":
            result.append(f)
    return result


def _csv_fields(record_type: type) -> list[tuple[str, str]]:
    """Return (attribute name, column name) pairs for a dataclass type."""
    return [(f.name, f.metadata["csv"]) for f in _csv_field_objects(record_type)]


def expected_headers(record_type: type) -> list[str]:
    """Return the column names a record type expects, in field order."""
    return [column for _, column in _csv_fields(record_type)]


def _parse_int(text: str) -> int:
    text = text.strip()
    return int(text) if text else 0


def _parse_decimal(text: str) -> Decimal:
    try:
        return Decimal(text.strip())
    except InvalidOperation as exc:
        raise ValueError(f"can't convert {text!r} to decimal") from exc


def _parse_float(text: str) -> float:
    text = text.strip()
    return float(text) if text else 0.0


_PARSERS: dict[str, Callable[[str], Any]] = {
    "str": str,
    "int": _parse_int,
    "float": _parse_float,
    "Decimal": _parse_decimal,
    "decimal.Decimal": _parse_decimal,
}


def _parser_for(f: dataclasses.Field) -> Callable[[str], Any]:
    annotation = f.type
    if isinstance(annotation, str):
        type_name = annotation.strip()
    else:
        type_name = getattr(annotation, "__name__", repr(annotation))
    parser = _PARSERS.get(type_name)
    if parser is None:
        raise TypeError(f"unsupported CSV field type for {f.name!r}: {annotation!r}")
    return parser


def _format_decimal(value: Decimal) -> str:
    return format(value.normalize(), "f")


def _format(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, Decimal):
        return _format_decimal(value)
    return str(value)


def _read_text(stream: IO[Any]) -> str:
    data = stream.read()
    if isinstance(data, bytes):
        try:
            return data.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise CsvError(f"failed to read header for validation: {exc}") from exc
    return data


def read_with_header_validation(stream: IO[Any], record_type: type[T]) -> list[T]:
    """Read CSV rows into ``record_type`` after checking the header row exactly."""
    field_objects = _csv_field_objects(record_type)
    fields = [(f.name, f.metadata["csv"]) for f in field_objects]
    want = [column for _, column in fields]
    parsers = [_parser_for(f) for f in field_objects]

    reader = csv.reader(io.StringIO(_read_text(stream), newline=""))
    try:
        rows = (row for row in reader if row)
        header = next(rows, None)
        if header is None:
            raise CsvError("failed to read header for validation: EOF")
        if header != want:
            raise CsvError(f"CSV header mismatch. Got: {header}, Want: {want}")

        records = []
        for row in rows:
            if len(row) != len(header):
                raise CsvError(f"record on line {reader.line_num}: wrong number of fields")
            try:
                values = {
                    name: parse(text) for (name, _), parse, text in zip(fields, parsers, row)
                }
            except ValueError as exc:
                raise CsvError(f"csv unmarshal failed on line {reader.line_num}: {exc}") from exc
            records.append(record_type(**values))
        return records
    except csv.Error as exc:
        raise CsvError(f"csv unmarshal failed: {exc}") from exc


def write_records(stream: IO[str], records: Iterable[Any], record_type: type) -> None:
    """Write a header row and one row per record to a text stream."""
    fields = _csv_fields(record_type)
    writer = csv.writer(stream, lineterminator="\n")
    writer.writerow([column for _, column in fields])
    for record in records:
        writer.writerow([_format(getattr(record, name)) for name, _ in fields])