"""
Drop-file readers for CSV and JSON cycle-time exports.
"""

import csv
import json
from pathlib import Path
from typing import Any

from forcam_ingest.core.config import FileSettings
from forcam_ingest.core.models import ImportType
from forcam_ingest.core.normalizer import row_from_columns

IMPORT_TYPES = {
    ".csv": ImportType.CSV,
    ".json": ImportType.JSON,
}

# Envelope keys a JSON drop file may wrap its rows in
JSON_ROW_KEYS = ("items", "data", "records", "rows")


def import_type_for(path: Path) -> ImportType | None:
    return IMPORT_TYPES.get(path.suffix.lower())


class DropFileReader:
    """
    Reads a drop file into raw row dicts for the batch loader.

    Args:
        settings: File section of the run settings
    """

    def __init__(self, settings: FileSettings):
        self.settings = settings

    def read(self, path: Path) -> tuple[ImportType, list[dict[str, Any]]]:
        """
        Read all rows of one file.

        Args:
            path: Drop file

        Returns:
            (import type, rows in file order)

        Raises:
            ValueError: If the file type is unsupported or the JSON is malformed
            OSError: If the file cannot be read
        """
        import_type = import_type_for(path)
        if import_type is ImportType.CSV:
            return import_type, self.read_csv(path)
        if import_type is ImportType.JSON:
            return import_type, self.read_json(path)
        raise ValueError(f"Unsupported file format: {path.suffix or path.name}")

    def read_csv(self, path: Path) -> list[dict[str, Any]]:
        """Positional rows after the optional header; blank lines are dropped."""
        rows: list[dict[str, Any]] = []
        with open(path, newline="", encoding=self.settings.encoding) as f:
            reader = csv.reader(f, delimiter=self.settings.csv_delimiter)
            if self.settings.csv_has_header:
                next(reader, None)
            for cells in reader:
                if not any(cell.strip() for cell in cells):
                    continue
                rows.append(row_from_columns(cells))
        return rows

    def read_json(self, path: Path) -> list[dict[str, Any]]:
        """A top-level array, an object wrapping one, or a single row object."""
        with open(path, encoding=self.settings.encoding) as f:
            content = json.load(f)

        if isinstance(content, list):
            return content
        if isinstance(content, dict):
            for key in JSON_ROW_KEYS:
                if isinstance(content.get(key), list):
                    return content[key]
            return [content]
        raise ValueError(f"JSON drop file must contain an array or object: {path}")
