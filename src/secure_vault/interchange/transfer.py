# Transfer Service - import/export orchestration
#
# Reads import files (size-capped), runs the codecs, and merges the
# accepted records into the vault in one atomic batch together with any
# categories they reference that do not exist yet. Exports read the
# unlocked vault and write the serialized file.

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

from ..core import EventSeverity, EventType, get_audit_logger, log_security_event
from ..core.config import VaultConfig
from ..vault.exceptions import UnsupportedFormat, ValidationError, VaultError, VaultLocked
from ..vault.models import Category, PasswordEntry
from ..vault.session import SessionManager
from .csv_utils import BOM
from .manager import ImportExportManager, ImportResult

logger = logging.getLogger(__name__)


class TransferService:
    """
    Import/export against a live session.

    Args:
        session: SessionManager owning the vault
        codecs: Format facade (default ImportExportManager())
        max_bytes: Largest accepted import
    """

    def __init__(
        self,
        session: SessionManager,
        codecs: Optional[ImportExportManager] = None,
        max_bytes: int = VaultConfig.MAX_IMPORT_BYTES,
    ):
        self.session = session
        self.codecs = codecs or ImportExportManager()
        self.max_bytes = max_bytes
        self.audit = get_audit_logger()

    # ── Import ───────────────────────────────────────────────────────

    def read_import_file(self, path: Union[str, Path]) -> str:
        path = Path(path)
        if not path.is_file():
            raise ValidationError(f"Import file not found: {path.name}")
        size = path.stat().st_size
        if size > self.max_bytes:
            raise ValidationError(
                f"Import file is too large ({size} bytes, limit {self.max_bytes})"
            )
        try:
            return path.read_text(encoding="utf-8-sig")
        except UnicodeDecodeError as exc:
            raise UnsupportedFormat("Import file is not UTF-8 text") from exc

    def import_file(
        self,
        path: Union[str, Path],
        password: Optional[str] = None,
        merge: bool = True,
        format: Optional[str] = None,
    ) -> ImportResult:
        if merge and self.session.is_locked:
            raise VaultLocked()
        content = self.read_import_file(path)
        return self.import_content(Path(path).name, content, password, merge=merge, format=format)

    def import_content(
        self,
        filename: Optional[str],
        content: str,
        password: Optional[str] = None,
        merge: bool = True,
        format: Optional[str] = None,
    ) -> ImportResult:
        """
        Parse and validate ``content``; with ``merge`` save the result.

        Without ``merge`` nothing is written (preview).
        """
        if merge and self.session.is_locked:
            raise VaultLocked()
        if len(content.encode("utf-8")) > self.max_bytes:
            raise ValidationError(f"Import content exceeds {self.max_bytes} bytes")

        try:
            result = self.codecs.import_content(filename, content.lstrip(BOM), password, format=format)
        except VaultError as exc:
            log_security_event(
                EventType.VAULT_ERROR,
                EventSeverity.INVESTIGATE,
                f"Import rejected: {exc.code}",
                details={"error": exc.code, "format": format},
            )
            raise
        if merge and result.entries:
            result.entries = self._merge(result.entries)

        self.audit.log_event(
            event_type=EventType.VAULT_IMPORT,
            severity=EventSeverity.INFO,
            message=f"Imported {result.imported} entries ({result.format})",
            details={
                "format": result.format,
                "imported": result.imported,
                "skipped": result.skipped,
                "merged": merge,
            },
        )
        return result

    def _merge(self, entries: List[Any]) -> List[Any]:
        existing = {c.name.lower() for c in self.session.get_categories()}
        new_categories: List[Category] = []
        for entry in entries:
            name = entry.category if isinstance(entry, PasswordEntry) else ""
            if name and name.lower() not in existing:
                existing.add(name.lower())
                new_categories.append(Category(name=name))

        saved = self.session.apply_batch(new_categories + list(entries))
        if new_categories:
            logger.info("Created %d categories during import", len(new_categories))
        return saved[len(new_categories):]

    # ── Export ───────────────────────────────────────────────────────

    def export_content(self, format: str, password: Optional[str] = None) -> Tuple[str, int]:
        """Serialize the unlocked vault. Returns (content, record count)."""
        records = self.session.get_password_entries() + self.session.get_totp_entries()
        content = self.codecs.export_content(records, format, password)
        count = self.codecs.exportable_count(records, format)
        encrypted = format == "securevault"
        self.audit.log_event(
            event_type=EventType.VAULT_EXPORT,
            severity=EventSeverity.INFO if encrypted else EventSeverity.ALERT,
            message=f"Exported {count} entries ({format})",
            details={"format": format, "count": count, "encrypted": encrypted},
        )
        return content, count

    def export_vault(
        self,
        format: str,
        path: Union[str, Path],
        password: Optional[str] = None,
    ) -> Dict[str, Any]:
        content, count = self.export_content(format, password)
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
        logger.info("Export written to %s", path)
        return {"success": True, "count": count, "format": format, "path": str(path)}
