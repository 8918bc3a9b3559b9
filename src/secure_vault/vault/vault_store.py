# Vault Store - Encrypted Record Store
#
# One AES-256-GCM encrypted JSON document on disk holding three
# collections: password entries, TOTP entries and categories.
#
#   vault.dat = {"version": 1, "nonce": <b64>, "ciphertext": <b64>}
#
# Every write re-encrypts the whole document with a fresh nonce and
# replaces the file atomically, so a crash leaves either the old or the
# new document, never a mix. The in-memory copy is swapped only after
# the write succeeded, which makes multi-record batches all-or-nothing.

import base64
import copy
import json
import logging
import os
import tempfile
import threading
import uuid
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Tuple, Union

from ..core.config import VaultConfig, get_data_dir
from .encryption import EncryptionService, InvalidTag, KeyBytes
from .exceptions import ValidationError, VaultCorrupted, VaultLocked
from .models import (
    COLLECTION_TYPES,
    Category,
    Collection,
    PasswordEntry,
    TotpEntry,
    collection_for,
    utcnow,
)

logger = logging.getLogger(__name__)

StoredRecord = Union[PasswordEntry, TotpEntry, Category]
Document = Dict[Collection, List]


class OpenOutcome(str, Enum):
    """Result of trying to open the persisted vault."""
    OPENED = "opened"
    RECOVERED_EMPTY = "recovered_empty"
    FATAL = "fatal"


def empty_document() -> Document:
    return {collection: [] for collection in Collection}


def resolve_open(
    load: Callable[[], Document],
    recovery_used: bool,
) -> Tuple[OpenOutcome, Optional[Document]]:
    """
    Decide how an open attempt ends.

    - load() succeeds                    -> OPENED with the document
    - load() fails, recovery still free  -> RECOVERED_EMPTY (caller resets)
    - load() fails, recovery already run -> FATAL

    Only VaultCorrupted counts as a failed load; anything else propagates.
    """
    try:
        return OpenOutcome.OPENED, load()
    except VaultCorrupted as exc:
        if recovery_used:
            logger.error("Vault still unreadable after recovery: %s", exc)
            return OpenOutcome.FATAL, None
        logger.error("Vault unreadable, one-shot recovery available: %s", exc)
        return OpenOutcome.RECOVERED_EMPTY, None


class VaultStore:
    """
    Encrypted key/value record store.

    States:
    - Locked: no key, no document; every record operation raises VaultLocked
    - Unlocked: key and decrypted document held in memory

    Args:
        path: Vault file. Defaults to <data dir>/vault.dat.
    """

    FORMAT_VERSION = 1

    def __init__(self, path: Optional[Union[str, Path]] = None):
        self.path = Path(path) if path else get_data_dir() / VaultConfig.VAULT_FILE_NAME
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._key: Optional[bytearray] = None
        self._doc: Optional[Document] = None
        self._lock = threading.RLock()

    @property
    def is_unlocked(self) -> bool:
        return self._key is not None

    def exists(self) -> bool:
        return self.path.exists() and self.path.stat().st_size > 0

    # ── Open / close ─────────────────────────────────────────────────

    def open(
        self,
        key: KeyBytes,
        recovery_used: bool = False,
        allow_create: bool = False,
    ) -> OpenOutcome:
        """
        Decrypt the vault file with ``key``.

        With ``allow_create`` a missing or empty file is a brand new vault
        and is created empty. Otherwise it is unreadable like any other
        damaged file. On RECOVERED_EMPTY or FATAL the store stays locked;
        the caller owns the recovery (new salt, new key, initialize()).
        """
        with self._lock:
            if allow_create and not self.exists():
                self.initialize(key)
                return OpenOutcome.OPENED

            outcome, doc = resolve_open(lambda: self.read_document(key), recovery_used)
            if outcome is OpenOutcome.OPENED:
                self._attach(key, doc)
            return outcome

    def initialize(self, key: KeyBytes) -> None:
        """Write an empty document under ``key`` and unlock with it."""
        with self._lock:
            self._write(empty_document(), key)
            self._attach(key, empty_document())

    def quarantine(self) -> Optional[Path]:
        """Move an unreadable vault file aside before it is replaced."""
        with self._lock:
            if not self.path.exists():
                return None
            target = self.path.with_name(
                f"{self.path.name}.corrupt-{utcnow().strftime('%Y%m%dT%H%M%S')}"
            )
            os.replace(self.path, target)
            logger.warning("Unreadable vault file moved to %s", target)
            return target

    def close(self) -> None:
        """Forget the key and the decrypted document. Idempotent."""
        with self._lock:
            if self._key is not None:
                EncryptionService.scrub(self._key)
            self._key = None
            self._doc = None

    def _attach(self, key: KeyBytes, doc: Document) -> None:
        if self._key is not None and self._key is not key:
            EncryptionService.scrub(self._key)
        self._key = bytearray(key)
        self._doc = doc

    # ── Records ──────────────────────────────────────────────────────

    def list(self, collection: Collection) -> List[StoredRecord]:
        with self._lock:
            doc = self._require_unlocked()
            return copy.deepcopy(doc[collection])

    def get(self, collection: Collection, record_id: str) -> Optional[StoredRecord]:
        with self._lock:
            doc = self._require_unlocked()
            for record in doc[collection]:
                if record.id == record_id:
                    return copy.deepcopy(record)
            return None

    def put(self, record: StoredRecord) -> StoredRecord:
        """
        Insert or update one record.

        A record whose id exists is replaced in place (``created`` kept,
        ``modified`` stamped); anything else gets a fresh id and both
        timestamps.
        """
        return self.apply_batch([record])[0]

    def apply_batch(self, records: Iterable[StoredRecord]) -> List[StoredRecord]:
        """Upsert many records with a single encrypted write."""
        with self._lock:
            doc = copy.deepcopy(self._require_unlocked())
            saved = [self._upsert(doc, record) for record in records]
            self._commit(doc)
            return copy.deepcopy(saved)

    def delete(self, collection: Collection, record_id: str) -> bool:
        """
        Delete by id. Unknown ids are a no-op (returns False, no write).

        Deleting a category clears the category field of the password
        entries that reference it, in the same write.
        """
        with self._lock:
            doc = copy.deepcopy(self._require_unlocked())
            records = doc[collection]
            index = next((i for i, r in enumerate(records) if r.id == record_id), None)
            if index is None:
                return False
            removed = records.pop(index)
            if collection is Collection.CATEGORIES:
                for entry in doc[Collection.PASSWORDS]:
                    if entry.category == removed.name:
                        entry.category = ""
            self._commit(doc)
            return True

    def rekey(self, new_key: KeyBytes) -> None:
        """Re-encrypt the current document under ``new_key``."""
        with self._lock:
            doc = self._require_unlocked()
            self._write(doc, new_key)
            self._attach(new_key, doc)

    # ── Internals ────────────────────────────────────────────────────

    def _require_unlocked(self) -> Document:
        if self._key is None or self._doc is None:
            raise VaultLocked()
        return self._doc

    def _upsert(self, doc: Document, record: StoredRecord) -> StoredRecord:
        record = copy.deepcopy(record)
        record.validate()
        collection = collection_for(record)
        records = doc[collection]
        now = utcnow()

        index = None
        if record.id:
            index = next((i for i, r in enumerate(records) if r.id == record.id), None)

        if collection is Collection.CATEGORIES:
            self._check_category_name(doc, record, index)

        if index is None:
            record.id = str(uuid.uuid4())
            if not isinstance(record, Category):
                record.created = now
                record.modified = now
            records.append(record)
        else:
            previous = records[index]
            if isinstance(record, Category):
                if previous.name != record.name:
                    for entry in doc[Collection.PASSWORDS]:
                        if entry.category == previous.name:
                            entry.category = record.name
            else:
                record.created = previous.created or now
                record.modified = now
            records[index] = record
        return record

    @staticmethod
    def _check_category_name(doc: Document, category: Category, index: Optional[int]) -> None:
        for i, existing in enumerate(doc[Collection.CATEGORIES]):
            if i != index and existing.name.lower() == category.name.lower():
                raise ValidationError(f"Category already exists: {category.name}")

    def _commit(self, doc: Document) -> None:
        # Lock may have happened between reading and writing.
        if self._key is None:
            raise VaultLocked()
        self._write(doc, self._key)
        self._doc = doc

    def _write(self, doc: Document, key: KeyBytes) -> None:
        plaintext = json.dumps({
            collection.value: [record.to_dict() for record in doc[collection]]
            for collection in Collection
        }).encode("utf-8")
        nonce, ciphertext = EncryptionService.encrypt(plaintext, key)
        payload = json.dumps({
            "version": self.FORMAT_VERSION,
            "nonce": base64.b64encode(nonce).decode("ascii"),
            "ciphertext": base64.b64encode(ciphertext).decode("ascii"),
        }).encode("utf-8")

        fd, tmp_name = tempfile.mkstemp(prefix=self.path.name, suffix=".tmp", dir=self.path.parent)
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(payload)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp_name, self.path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def read_document(self, key: KeyBytes) -> Document:
        """
        Read and decrypt the vault file.

        Raises:
            VaultCorrupted: unreadable container, wrong key, tampered
                ciphertext or a decrypted payload of the wrong shape
        """
        try:
            container = json.loads(self.path.read_bytes())
            nonce = base64.b64decode(container["nonce"], validate=True)
            ciphertext = base64.b64decode(container["ciphertext"], validate=True)
        except (OSError, ValueError, KeyError, TypeError) as exc:
            raise VaultCorrupted(f"Vault file is unreadable: {exc}") from exc

        try:
            plaintext = EncryptionService.decrypt(nonce, ciphertext, key)
        except (InvalidTag, ValueError) as exc:
            raise VaultCorrupted("Vault file failed to decrypt") from exc

        try:
            raw = json.loads(plaintext)
            doc = empty_document()
            for collection, record_type in COLLECTION_TYPES.items():
                items = raw.get(collection.value, [])
                if not isinstance(items, list):
                    raise TypeError(f"{collection.value} is not a list")
                doc[collection] = [record_type.from_dict(item) for item in items]
        except (ValueError, TypeError, AttributeError) as exc:
            raise VaultCorrupted(f"Vault document is malformed: {exc}") from exc
        return doc
