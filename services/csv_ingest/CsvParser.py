"""CSV parser.

Turns the raw bytes of an uploaded file into Records. Rows missing a code or
metadata_small are dropped with a warning, duplicate codes keep their first
occurrence, and metadata fields may arrive base64-encoded.
"""

import base64
import binascii
import csv
import io
import json
import re
from typing import Any

from shared.clients.doc.models.Record import Record
from shared.errors import ParseError
from shared.helper.HelperConfig import HelperConfig
from shared.models.ingest import ParseResult

REQUIRED_COLUMNS = ("code", "metadata_small")
BIG_COLUMNS = ("metadata_big_1", "metadata_big_2", "metadata_big_3")
DELIMITER_CANDIDATES = (";", ",", "\t", "|")

_BASE64_RE = re.compile(r"^[A-Za-z0-9+/]+={0,2}$")


def _decode_bytes(data: bytes) -> str:
    """UTF-8 (BOM stripped) with a latin-1 fallback."""
    try:
        return data.decode("utf-8-sig")
    except UnicodeDecodeError:
        return data.decode("latin-1")


def _maybe_base64(value: str) -> str:
    """Decode value if it is base64 of printable UTF-8 text, else return it unchanged."""
    if len(value) < 4 or len(value) % 4 or not _BASE64_RE.match(value):
        return value
    try:
        decoded = base64.b64decode(value, validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        return value
    if not decoded or not all(ch.isprintable() or ch in "\r\n\t" for ch in decoded):
        return value
    return decoded


def _maybe_json(value: str) -> Any:
    stripped = value.strip()
    if not stripped or stripped[0] not in "{[":
        return value
    try:
        parsed = json.loads(stripped)
    except json.JSONDecodeError:
        return value
    return parsed if isinstance(parsed, (dict, list)) else value


class CsvParser:
    """Parses uploaded CSV bytes into Records for one (fileName, namespace)."""

    def __init__(self, helper_config: HelperConfig) -> None:
        self.logging = helper_config.get_logger()
        self.delimiter = helper_config.get_string_val("CSV_DELIMITER", default=";")
        # a literal tab is stripped by get_string_val
        if not self.delimiter or self.delimiter.lower() in ("\\t", "tab"):
            self.delimiter = "\t"

    ##########################################
    ############### DELIMITERS ###############
    ##########################################

    def _detect_delimiter(self, line: str) -> str:
        """Configured delimiter if the line contains it, else the most frequent candidate."""
        if self.delimiter in line:
            return self.delimiter
        counts = {c: line.count(c) for c in DELIMITER_CANDIDATES}
        best = max(counts, key=lambda c: counts[c])
        return best if counts[best] > 0 else self.delimiter

    def _normalize_header(self, text: str) -> tuple[str, str]:
        """Align the header delimiter with the body delimiter.

        Only the header line is rewritten; this is not a general dialect resolver.

        Returns:
            tuple[str, str]: The (possibly rewritten) text and the body delimiter.
        """
        lines = text.splitlines(keepends=True)
        header_index = next((i for i, line in enumerate(lines) if line.strip()), None)
        if header_index is None:
            raise ParseError("CSV file is empty.")
        body_line = next((line for line in lines[header_index + 1:] if line.strip()), "")

        header_delimiter = self._detect_delimiter(lines[header_index])
        body_delimiter = self._detect_delimiter(body_line) if body_line else header_delimiter
        if header_delimiter != body_delimiter:
            self.logging.warning(
                "CSV header uses %r but rows use %r, normalising the header.",
                header_delimiter, body_delimiter,
            )
            lines[header_index] = lines[header_index].replace(header_delimiter, body_delimiter)
        return "".join(lines[header_index:]), body_delimiter

    ##########################################
    ################# PARSE ##################
    ##########################################

    def parse(self, data: bytes, file_name: str, namespace: str = "default") -> ParseResult:
        """Parse a CSV file into Records.

        Args:
            data (bytes): Raw file content.
            file_name (str): Origin file name stored on every Record.
            namespace (str): Target namespace stored on every Record.

        Returns:
            ParseResult: Valid records plus counts of dropped rows.

        Raises:
            ParseError: If the file is empty, required header columns are
                missing, or the CSV structure is unreadable.
        """
        text, delimiter = self._normalize_header(_decode_bytes(data))
        reader = csv.DictReader(io.StringIO(text, newline=""), delimiter=delimiter)

        try:
            fieldnames = reader.fieldnames or []
        except csv.Error as e:
            raise ParseError(f"Unreadable CSV header: {e}") from e
        # header names are matched case- and whitespace-insensitively
        reader.fieldnames = [(name or "").strip().lower() for name in fieldnames]
        missing = [col for col in REQUIRED_COLUMNS if col not in reader.fieldnames]
        if missing:
            raise ParseError(f"CSV header is missing required column(s): {', '.join(missing)}")

        result = ParseResult()
        seen_codes: set[str] = set()
        try:
            for row in reader:
                row_number = reader.line_num
                values = {k: (v or "").strip() for k, v in row.items() if isinstance(k, str) and isinstance(v, str)}
                if not any(values.values()):
                    continue

                code = values.get("code", "")
                metadata_small = _maybe_base64(values.get("metadata_small", ""))
                if not code or not metadata_small:
                    missing_field = "code" if not code else "metadata_small"
                    message = f"Skipping row {row_number} of '{file_name}': missing {missing_field}."
                    self.logging.warning(message)
                    result.warnings.append(message)
                    result.skipped_rows += 1
                    continue

                if code in seen_codes:
                    message = f"Skipping row {row_number} of '{file_name}': duplicate code '{code}'."
                    self.logging.warning(message)
                    result.warnings.append(message)
                    result.duplicate_codes.append(code)
                    continue
                seen_codes.add(code)

                big_fields = {}
                for column in BIG_COLUMNS:
                    raw = values.get(column, "")
                    big_fields[column] = _maybe_json(_maybe_base64(raw)) if raw else None

                result.records.append(Record(
                    code=code,
                    file_name=file_name,
                    namespace=namespace,
                    metadata_small=metadata_small,
                    source=values.get("source") or None,
                    **big_fields,
                ))
        except csv.Error as e:
            raise ParseError(f"Malformed CSV: {e}", row_number=reader.line_num) from e

        self.logging.info(
            "Parsed '%s': %d records, %d rows skipped, %d duplicate codes.",
            file_name, len(result.records), result.skipped_rows, len(result.duplicate_codes),
        )
        return result
