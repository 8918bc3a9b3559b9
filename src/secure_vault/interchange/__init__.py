# Interchange - import/export of other password managers' formats
#
# LastPass, Bitwarden, KeePass, Chrome, Firefox, WinAuth, generic
# CSV/JSON and encrypted .svault backups.

from .detection import EXPORT_FORMATS, SUPPORTED_FORMATS, detect_format
from .manager import ImportExportManager, ImportResult
from .transfer import TransferService

__all__ = [
    "EXPORT_FORMATS",
    "SUPPORTED_FORMATS",
    "detect_format",
    "ImportExportManager",
    "ImportResult",
    "TransferService",
]
