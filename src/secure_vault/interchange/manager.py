"""
Import/export facade over the format codecs.

Pure: works on strings only. Reading and writing files, size limits
and merging into the vault belong to transfer.TransferService.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Union

from ..vault.exceptions import UnsupportedFormat
from ..vault.models import PasswordEntry, TotpEntry
from .backup_codec import encode_backup
from .detection import EXPORT_FORMATS, SUPPORTED_FORMATS, detect_format
from .exporters import EXPORTERS, FULL_RECORD_FORMATS
from .importers import PARSERS
from .sanitize import process_entries

logger = logging.getLogger(__name__)

Record = Union[PasswordEntry, TotpEntry]


@dataclass
class ImportResult:
    format: str
    entries: List[Record] = field(default_factory=list)
    skipped: int = 0
    errors: List[str] = field(default_factory=list)
    success: bool = True

    @property
    def imported(self) -> int:
        return len(self.entries)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "imported": self.imported,
            "skipped": self.skipped,
            "errors": list(self.errors),
            "format": self.format,
            "entries": [entry.to_dict() for entry in self.entries],
        }


class ImportExportManager:
    """Detect, parse, validate and serialize interchange formats."""

    supported_formats = SUPPORTED_FORMATS
    export_formats = EXPORT_FORMATS

    def detect_format(self, filename: Optional[str], content: str) -> str:
        return detect_format(filename, content)

    def import_content(
        self,
        filename: Optional[str],
        content: str,
        password: Optional[str] = None,
        format: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> ImportResult:
        """
        Parse ``content`` into validated records (nothing is stored).

        ``format`` overrides detection. Row problems end up in
        ``errors``/``skipped``; file-level problems raise (UnsupportedFormat,
        PasswordRequired, DecryptionError).
        """
        fmt = format or self.detect_format(filename, content)
        parser = PARSERS.get(fmt)
        if parser is None:
            raise UnsupportedFormat(f"Unsupported format: {fmt}")
        logger.info("Importing %s as %s", filename or "<content>", fmt)

        batch = parser(content, password)
        processed = process_entries(batch.candidates, now=now)
        return ImportResult(
            format=fmt,
            entries=processed.valid,
            skipped=len(processed.invalid) + len(batch.errors),
            errors=batch.errors + processed.errors,
        )

    def export_content(
        self,
        records: Iterable[Record],
        format: str,
        password: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> str:
        """Serialize records. Formats without TOTP support get passwords only."""
        if format not in EXPORT_FORMATS:
            raise UnsupportedFormat(f"Unsupported export format: {format}")
        records = list(records)
        if format not in FULL_RECORD_FORMATS:
            records = [r for r in records if isinstance(r, PasswordEntry)]
        if format == "securevault":
            return encode_backup(records, password, now=now)
        return EXPORTERS[format](records, now=now)

    @staticmethod
    def exportable_count(records: Iterable[Record], format: str) -> int:
        records = list(records)
        if format in FULL_RECORD_FORMATS:
            return len(records)
        return sum(1 for r in records if isinstance(r, PasswordEntry))
