"""Format adapters: turn a scan export file into a lazy stream of raw rows.

Adapters know file formats, not vulnerabilities. Each yields RawRow objects in
source order; a row that cannot be parsed is yielded with ``error`` set so the
caller can count and skip it. Problems that make the whole file unusable raise
UnreadableFile.
"""

import abc
import codecs
import csv
import json
import logging
import zipfile
from collections.abc import Iterator
from dataclasses import dataclass, field
from datetime import date, datetime, time
from pathlib import Path
from typing import Any, ClassVar

import ijson
from openpyxl import load_workbook
from openpyxl.utils.exceptions import InvalidFileException

from app.services.errors import UnreadableFile, UnsupportedFormat

logger = logging.getLogger(__name__)

# Delimiters tried on the header line of delimited-text files, in tie-break order.
CANDIDATE_DELIMITERS = (",", ";", "\t", "|")

# Keys under which JSON documents keep their rows (CycloneDX, OpenVEX, generic exports).
JSON_ROW_CONTAINER_KEYS = ("vulnerabilities", "statements", "records", "findings", "results")
# Document-level object copied into every row (CycloneDX metadata.component names the product).
JSON_DOCUMENT_CONTEXT_KEY = "metadata"

_JSON_ERRORS = (ijson.JSONError, UnicodeDecodeError)
# Pure-Python parser: emits every event up to a syntax error.
_PYTHON_IJSON = ijson.get_backend("python")


@dataclass(frozen=True)
class RawRow:
    """One source row: 1-based data-row index plus raw values, or a parse error."""

    index: int
    values: dict[str, Any] = field(default_factory=dict)
    error: str | None = None


class FormatAdapter(abc.ABC):
    """Reads one file format into RawRow objects."""

    format_name: ClassVar[str]
    extensions: ClassVar[tuple[str, ...]]

    @abc.abstractmethod
    def read_rows(self, path: Path) -> Iterator[RawRow]:
        """Yield rows lazily in source order. Raises UnreadableFile on structural errors."""


def _field_count(line: str, delimiter: str) -> int:
    try:
        return len(next(csv.reader([line.rstrip("\r\n")], delimiter=delimiter), []))
    except csv.Error:
        return 0


def _open_error(path: Path, e: OSError) -> UnreadableFile:
    return UnreadableFile(f"Cannot read {path.name}: {e.strerror or e}", cause=e)


class DelimitedTextAdapter(FormatAdapter):
    """CSV-like text with a header row. Delimiter is detected from the header line."""

    format_name = "csv"
    extensions = (".csv",)

    def read_rows(self, path: Path) -> Iterator[RawRow]:
        try:
            handle = open(path, newline="", encoding="utf-8-sig")
        except OSError as e:
            raise _open_error(path, e) from e
        with handle:
            try:
                delimiter = self._detect_delimiter(handle)
                yield from self._iter_rows(handle, delimiter)
            except UnicodeDecodeError as e:
                raise UnreadableFile(
                    f"{path.name} is not valid UTF-8 text.", cause=e
                ) from e
            except OSError as e:
                raise _open_error(path, e) from e

    @staticmethod
    def _detect_delimiter(handle) -> str:
        """
        Pick the candidate delimiter that splits the first non-empty line into the most
        fields. Delimiters inside quoted header names do not count.
        """
        first_line = ""
        for line in handle:
            if line.strip():
                first_line = line
                break
        handle.seek(0)
        counts = {d: _field_count(first_line, d) for d in CANDIDATE_DELIMITERS}
        best = max(CANDIDATE_DELIMITERS, key=lambda d: counts[d])
        return best if counts[best] > 1 else ","

    @staticmethod
    def _iter_rows(handle, delimiter: str) -> Iterator[RawRow]:
        reader = csv.reader(handle, delimiter=delimiter, strict=True)
        header: list[str] | None = None
        index = 0
        while True:
            try:
                fields = next(reader)
            except StopIteration:
                break
            except csv.Error as e:
                if header is None:
                    raise UnreadableFile(f"Header row cannot be parsed: {e}", cause=e) from e
                index += 1
                logger.debug("Unparseable delimited row %s: %s", index, e)
                yield RawRow(index=index, error=f"Unparseable row: {e}")
                continue
            if not any(value.strip() for value in fields):
                continue
            if header is None:
                header = [name.strip() for name in fields]
                continue
            index += 1
            if len(fields) != len(header):
                yield RawRow(
                    index=index,
                    error=f"Expected {len(header)} fields, found {len(fields)}.",
                )
                continue
            yield RawRow(index=index, values=dict(zip(header, fields)))
        if header is None:
            raise UnreadableFile("File has no header row.")


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _cell_value(value: Any) -> Any:
    """Keep scalars; render dates and times as ISO strings."""
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    return value


class SpreadsheetAdapter(FormatAdapter):
    """First worksheet of an .xlsx workbook, streamed in read-only mode."""

    format_name = "xlsx"
    extensions = (".xlsx",)

    def read_rows(self, path: Path) -> Iterator[RawRow]:
        # Opened here so openpyxl does not reject files by extension (declared formats).
        try:
            handle = open(path, "rb")
        except OSError as e:
            raise _open_error(path, e) from e
        with handle:
            try:
                workbook = load_workbook(handle, read_only=True, data_only=True)
            except (InvalidFileException, zipfile.BadZipFile, KeyError, ValueError, OSError) as e:
                raise UnreadableFile(
                    f"{path.name} is not a valid .xlsx workbook.", cause=e
                ) from e
            try:
                if not workbook.worksheets:
                    raise UnreadableFile(f"{path.name} contains no worksheets.")
                yield from self._iter_rows(workbook.worksheets[0])
            except (zipfile.BadZipFile, OSError, KeyError) as e:
                raise UnreadableFile(f"{path.name} is corrupt.", cause=e) from e
            finally:
                workbook.close()

    @staticmethod
    def _iter_rows(sheet) -> Iterator[RawRow]:
        header: list[str] | None = None
        index = 0
        for cells in sheet.iter_rows(values_only=True):
            if all(_is_blank(c) for c in cells):
                continue
            if header is None:
                names = ["" if _is_blank(c) else str(c).strip() for c in cells]
                while names and not names[-1]:
                    names.pop()
                header = names
                continue
            index += 1
            if any(not _is_blank(c) for c in cells[len(header):]):
                yield RawRow(
                    index=index,
                    error=f"Row has values beyond the {len(header)} header columns.",
                )
                continue
            padded = list(cells[: len(header)]) + [None] * (len(header) - len(cells))
            values = {
                name: _cell_value(value)
                for name, value in zip(header, padded)
                if name
            }
            yield RawRow(index=index, values=values)
        if header is None:
            raise UnreadableFile("Worksheet has no header row.")


def flatten_json(value: Any, prefix: str = "") -> dict[str, Any]:
    """Flatten nested objects/arrays into dotted keys: {"a": [{"b": 1}]} -> {"a.0.b": 1}."""
    out: dict[str, Any] = {}
    if isinstance(value, dict):
        for key, item in value.items():
            out.update(flatten_json(item, f"{prefix}.{key}" if prefix else str(key)))
    elif isinstance(value, list):
        for position, item in enumerate(value):
            out.update(flatten_json(item, f"{prefix}.{position}" if prefix else str(position)))
    else:
        out[prefix] = value
    return out


@dataclass(frozen=True)
class JsonLayout:
    """Where the rows of a JSON file live: a streamed array, one object, or JSON Lines."""

    kind: str  # "items", "single" or "lines"
    prefix: str = ""
    context: dict[str, Any] = field(default_factory=dict)


def _skip_bom(handle) -> int:
    """Position handle after a UTF-8 BOM, if any; return the start offset."""
    if handle.read(len(codecs.BOM_UTF8)) == codecs.BOM_UTF8:
        return len(codecs.BOM_UTF8)
    handle.seek(0)
    return 0


def _scan_layout(events, tolerate_errors: bool) -> JsonLayout:
    depth = 0
    values_seen = 0
    top_event = None
    container = None
    key = None
    metadata = None
    builder = None
    try:
        for _, event, value in events:
            if depth == 0:
                if values_seen:
                    return JsonLayout("lines")
                top_event = event
                if event == "start_array":
                    return JsonLayout("items", "item")
            if builder is not None:
                builder.event(event, value)
            elif depth == 1 and event == "map_key":
                key = value
            elif depth == 1 and key == JSON_DOCUMENT_CONTEXT_KEY and event == "start_map":
                builder = ijson.ObjectBuilder()
                builder.event(event, value)
            elif (
                depth == 1
                and container is None
                and key in JSON_ROW_CONTAINER_KEYS
                and event == "start_array"
            ):
                container = key
            if event in ("start_map", "start_array"):
                depth += 1
            elif event in ("end_map", "end_array"):
                depth -= 1
            if builder is not None and depth == 1:
                metadata = builder.value
                builder = None
            if depth == 0:
                values_seen += 1
    except _JSON_ERRORS as e:
        if not tolerate_errors:
            raise
        if container is None and values_seen:
            # First line parsed, a later one did not: JSON Lines with a broken line.
            return JsonLayout("lines")
        if container is None:
            raise UnreadableFile(f"Invalid JSON: {e}", cause=e) from e
    if top_event is None:
        raise UnreadableFile("File contains no JSON data.")
    if container is None:
        return JsonLayout("single")
    context = {}
    if isinstance(metadata, dict):
        context = flatten_json(metadata, JSON_DOCUMENT_CONTEXT_KEY)
    return JsonLayout("items", f"{container}.item", context)


def scan_json_layout(handle, start: int = 0) -> JsonLayout:
    """
    Find where the rows are by walking parse events, without building the document.

    A top-level array streams its items. An object holding a row container streams that
    container; its ``metadata`` object becomes context for every row wherever it appears.
    Any other object is a single row. A second top-level value means JSON Lines.
    """
    try:
        return _scan_layout(ijson.parse(handle, multiple_values=True, use_float=True), False)
    except _JSON_ERRORS:
        # Compiled backends drop events parsed in the same buffer as the error.
        handle.seek(start)
        events = _PYTHON_IJSON.parse(handle, multiple_values=True, use_float=True)
        return _scan_layout(events, True)


def _object_row(index: int, item: Any, context: dict[str, Any]) -> RawRow:
    if not isinstance(item, dict):
        return RawRow(
            index=index,
            error=f"Expected a JSON object, found {type(item).__name__}.",
        )
    return RawRow(index=index, values={**context, **flatten_json(item)})


class VexJsonAdapter(FormatAdapter):
    """
    Structured JSON: CycloneDX VEX, OpenVEX, a wrapped or bare array of row objects,
    a single object, or JSON Lines (one object per line).

    Documents are streamed with ijson: one pass finds the row container, a second yields
    its items. A break inside the container ends the file with one row-level error after
    the rows before it; in JSON Lines each broken line is its own row-level error.
    """

    format_name = "json"
    extensions = (".json",)

    def read_rows(self, path: Path) -> Iterator[RawRow]:
        try:
            handle = open(path, "rb")
        except OSError as e:
            raise _open_error(path, e) from e
        with handle:
            try:
                start = _skip_bom(handle)
                layout = scan_json_layout(handle, start)
                handle.seek(start)
                if layout.kind == "items":
                    yield from self._iter_items(handle, start, layout)
                elif layout.kind == "single":
                    for item in ijson.items(handle, "", use_float=True):
                        yield _object_row(1, item, {})
            except UnicodeDecodeError as e:
                raise UnreadableFile(
                    f"{path.name} is not valid UTF-8 text.", cause=e
                ) from e
            except OSError as e:
                raise _open_error(path, e) from e
        if layout.kind != "lines":
            return
        try:
            with open(path, encoding="utf-8-sig") as text:
                yield from self._iter_json_lines(text)
        except UnicodeDecodeError as e:
            raise UnreadableFile(f"{path.name} is not valid UTF-8 text.", cause=e) from e
        except OSError as e:
            raise _open_error(path, e) from e

    @staticmethod
    def _iter_items(handle, start: int, layout: JsonLayout) -> Iterator[RawRow]:
        index = 0
        try:
            for item in ijson.items(handle, layout.prefix, use_float=True):
                index += 1
                yield _object_row(index, item, layout.context)
            return
        except _JSON_ERRORS as e:
            error = e
        # Replay with the pure-Python backend to recover rows parsed just before the break.
        handle.seek(start)
        recovered = 0
        try:
            for item in _PYTHON_IJSON.items(handle, layout.prefix, use_float=True):
                recovered += 1
                if recovered > index:
                    index = recovered
                    yield _object_row(index, item, layout.context)
        except _JSON_ERRORS as e:
            error = e
        logger.debug("JSON document broken after row %s: %s", index, error)
        yield RawRow(
            index=index + 1,
            error=f"Invalid JSON fragment, rest of the document skipped: {error}",
        )

    @staticmethod
    def _iter_json_lines(handle) -> Iterator[RawRow]:
        index = 0
        for line in handle:
            if not line.strip():
                continue
            try:
                item = json.loads(line)
            except json.JSONDecodeError as e:
                if index == 0:
                    raise UnreadableFile(f"Invalid JSON: {e}", cause=e) from e
                index += 1
                yield RawRow(index=index, error=f"Invalid JSON fragment: {e}")
                continue
            index += 1
            yield _object_row(index, item, {})
        if index == 0:
            raise UnreadableFile("File contains no JSON data.")


ADAPTER_CLASSES: tuple[type[FormatAdapter], ...] = (
    DelimitedTextAdapter,
    SpreadsheetAdapter,
    VexJsonAdapter,
)
ADAPTERS_BY_FORMAT: dict[str, type[FormatAdapter]] = {
    cls.format_name: cls for cls in ADAPTER_CLASSES
}
FORMAT_BY_EXTENSION: dict[str, str] = {
    ext: cls.format_name for cls in ADAPTER_CLASSES for ext in cls.extensions
}


def detect_format(path: str | Path, declared: str | None = None) -> str:
    """
    Return the format name for path. A declared format wins over the extension.
    Raises UnsupportedFormat for unknown formats and missing extensions; content is never sniffed.
    """
    if declared is not None and declared.strip():
        name = declared.strip().lower().lstrip(".")
        if name not in ADAPTERS_BY_FORMAT:
            raise UnsupportedFormat(
                f"Unsupported format {declared!r}; expected one of {sorted(ADAPTERS_BY_FORMAT)}."
            )
        return name
    suffix = Path(path).suffix.lower()
    if not suffix:
        raise UnsupportedFormat(
            f"Cannot detect the format of {Path(path).name!r}: file has no extension."
        )
    if suffix not in FORMAT_BY_EXTENSION:
        raise UnsupportedFormat(
            f"Unsupported file extension {suffix!r}; expected one of {sorted(FORMAT_BY_EXTENSION)}."
        )
    return FORMAT_BY_EXTENSION[suffix]


def get_adapter(format_name: str) -> FormatAdapter:
    """Instantiate the adapter for a format name returned by detect_format."""
    try:
        return ADAPTERS_BY_FORMAT[format_name]()
    except KeyError as e:
        raise UnsupportedFormat(f"Unsupported format {format_name!r}.", cause=e) from e
