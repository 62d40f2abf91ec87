"""Reader and writer for repair logs.

A repair log lists, per file, the documents that exist in the document store
without a matching vector:

    === Extra MongoDB Documents for products.csv ===

    {
      "code": "A-1",
      ...
    }

    {
      ...
    }

Objects are pretty-printed JSON separated by blank lines.
"""

import json
import re
from typing import Any

from shared.helper.HelperConfig import HelperConfig

SECTION_PREFIX = "=== Extra MongoDB Documents for "
_SECTION_RE = re.compile(r"^=== Extra MongoDB Documents for (?P<file_name>.+?) ===[ \t]*$", re.MULTILINE)
_BLANK_LINE_RE = re.compile(r"\n[ \t]*\n")


class RepairLog:
    def __init__(self, helper_config: HelperConfig) -> None:
        self.logging = helper_config.get_logger()

    def parse_repair_log(self, text: str) -> list[dict[str, Any]]:
        """Parse a repair log into documents.

        Every document gets the fileName of its section unless it carries one.
        Objects that are not valid JSON are logged and skipped.

        Args:
            text (str): Full repair log content.

        Returns:
            list[dict[str, Any]]: The documents, in log order.
        """
        headers = list(_SECTION_RE.finditer(text))
        documents: list[dict[str, Any]] = []
        for index, header in enumerate(headers):
            file_name = header.group("file_name").strip()
            end = headers[index + 1].start() if index + 1 < len(headers) else len(text)
            body = text[header.end():end]
            for block in _BLANK_LINE_RE.split(body):
                block = block.strip()
                if not block:
                    continue
                try:
                    document = json.loads(block)
                except json.JSONDecodeError as exc:
                    self.logging.warning("Skipping unparsable object in section '%s': %s", file_name, exc)
                    continue
                if not isinstance(document, dict):
                    self.logging.warning("Skipping non-object entry in section '%s'.", file_name)
                    continue
                document.setdefault("fileName", file_name)
                documents.append(document)

        self.logging.info("Parsed %d document(s) from %d repair log section(s).", len(documents), len(headers))
        return documents

    def format_repair_log(self, sections: dict[str, list[dict[str, Any]]]) -> str:
        """Render documents grouped by file name as a repair log."""
        parts: list[str] = []
        for file_name, documents in sections.items():
            if not documents:
                continue
            parts.append(f"{SECTION_PREFIX}{file_name} ===\n\n")
            for document in documents:
                parts.append(json.dumps(document, indent=2, ensure_ascii=False, default=str) + "\n\n")
        return "".join(parts)

    def read(self, path: str) -> list[dict[str, Any]]:
        with open(path, "r", encoding="utf-8") as f:
            return self.parse_repair_log(f.read())

    def write(self, path: str, sections: dict[str, list[dict[str, Any]]]) -> None:
        with open(path, "w", encoding="utf-8") as f:
            f.write(self.format_repair_log(sections))
