# Vault Session Manager
#
# Owns the lock/unlock state machine:
#
#   Uninitialized --setup--> Unlocked --lock / idle--> Locked --verify--> Unlocked
#
# plus rate-limited authentication, the idle auto-lock timer and every
# record operation. All transitions and vault accesses run under one
# re-entrant lock, so a verify racing a lock resolves in call order and
# no write commits after the key has been discarded.

import logging
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional

from ..core import EventSeverity, EventType, get_audit_logger
from ..core.config import AppSettings, VaultConfig
from . import totp
from .config_store import ConfigStore
from .encryption import EncryptionService, check_master_password_strength
from .exceptions import (
    AlreadyInitialized,
    InvalidPassword,
    NotInitialized,
    PersistentCorruption,
    RateLimited,
    ValidationError,
    VaultLocked,
)
from .models import Category, Collection, PasswordEntry, TotpEntry
from .password_audit import AuditReport, SearchCriteria, audit_passwords, search_passwords
from .unlock_throttle import UnlockThrottle
from .vault_store import OpenOutcome, StoredRecord, VaultStore

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    UNINITIALIZED = "uninitialized"
    LOCKED = "locked"
    UNLOCKED = "unlocked"


class SessionEvent(str, Enum):
    """Notifications for external collaborators (UI)."""
    UNLOCKED = "unlocked"
    LOCKED = "locked"
    AUTO_LOCKED = "auto_locked"
    DATA_LOST = "data_lost"


@dataclass
class UnlockResult:
    state: SessionState
    data_lost: bool = False

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"success": True, "state": self.state.value}
        if self.data_lost:
            result["data_lost"] = True
            result["warning"] = (
                "The vault could not be decrypted and was reset. "
                "All previously stored entries are permanently lost."
            )
        return result


class SessionManager:
    """
    Vault session: authentication, lock state and record access.

    Args:
        config_store: Unencrypted config (hash, salt, flags, settings)
        vault_store: Encrypted record store
        bcrypt_rounds: Cost for new master password hashes
        clock: Epoch-seconds source for rate limiting
        timer_factory: threading.Timer-compatible factory for auto-lock
    """

    def __init__(
        self,
        config_store: ConfigStore,
        vault_store: VaultStore,
        *,
        bcrypt_rounds: int = VaultConfig.BCRYPT_ROUNDS,
        clock: Callable[[], float] = time.time,
        timer_factory: Callable[..., Any] = threading.Timer,
    ):
        self.config_store = config_store
        self.vault_store = vault_store
        self.bcrypt_rounds = bcrypt_rounds
        self.throttle = UnlockThrottle(clock)

        self._lock = threading.RLock()
        self._timer_factory = timer_factory
        self._timer = None
        self._timer_generation = 0
        self._settings: Optional[AppSettings] = None
        self._listeners: List[Callable[[SessionEvent], None]] = []
        self.logger = get_audit_logger()

    # ── State ────────────────────────────────────────────────────────

    @property
    def state(self) -> SessionState:
        with self._lock:
            if self.vault_store.is_unlocked:
                return SessionState.UNLOCKED
            if self.config_store.is_setup():
                return SessionState.LOCKED
            return SessionState.UNINITIALIZED

    @property
    def is_locked(self) -> bool:
        return not self.vault_store.is_unlocked

    def status(self) -> Dict[str, bool]:
        with self._lock:
            return {
                "is_setup": self.config_store.is_setup(),
                "is_locked": self.is_locked,
            }

    def add_listener(self, callback: Callable[[SessionEvent], None]) -> None:
        self._listeners.append(callback)

    def remove_listener(self, callback: Callable[[SessionEvent], None]) -> None:
        if callback in self._listeners:
            self._listeners.remove(callback)

    def _emit(self, event: SessionEvent) -> None:
        for callback in list(self._listeners):
            try:
                callback(event)
            except Exception:
                logger.exception("Session listener failed for %s", event.value)

    # ── Transitions ──────────────────────────────────────────────────

    def setup(self, master_password: str) -> UnlockResult:
        """
        First-time setup: hash + fresh salt, new empty vault, Unlocked.

        Raises:
            AlreadyInitialized: a master password already exists
            ValidationError: master password too weak
        """
        with self._lock:
            if self.config_store.is_setup():
                raise AlreadyInitialized("Vault already exists. Unlock it instead.")
            check_master_password_strength(master_password)

            record = EncryptionService.hash_password(master_password, self.bcrypt_rounds)
            salt = EncryptionService.generate_salt()
            key = EncryptionService.derive_key(master_password, salt)
            try:
                if self.vault_store.exists():
                    self.vault_store.quarantine()
                self.vault_store.initialize(key)
            finally:
                EncryptionService.scrub(key)
            self.config_store.save_credentials(record, salt)

            self.throttle.reset()
            self._arm_idle_timer()
            self.logger.log_event(
                event_type=EventType.VAULT_CREATED,
                severity=EventSeverity.INFO,
                message="Vault initialized with master password",
            )
            self._emit(SessionEvent.UNLOCKED)
            return UnlockResult(SessionState.UNLOCKED)

    def verify(self, master_password: str) -> UnlockResult:
        """
        Unlock with the master password.

        Raises:
            NotInitialized: no master password set
            RateLimited: inside the backoff window (hash not consulted)
            InvalidPassword: wrong password (counts as a failure)
            PersistentCorruption: vault unreadable after the one-shot recovery
        """
        with self._lock:
            record = self.config_store.load_password_record()
            if record is None:
                raise NotInitialized("Master password not set")

            self._check_throttle()
            if not EncryptionService.verify_password(master_password, record):
                self._register_failure()
                raise InvalidPassword("Invalid password")
            self.throttle.reset()

            result = self._open_vault(master_password)
            self._arm_idle_timer()
            self.logger.log_event(
                event_type=EventType.VAULT_UNLOCKED,
                severity=EventSeverity.INFO,
                message="Vault unlocked successfully",
            )
            self._emit(SessionEvent.UNLOCKED)
            return result

    def lock(self) -> None:
        """Discard the key and the decrypted vault. Idempotent."""
        with self._lock:
            self._lock_now(SessionEvent.LOCKED)

    def change_password(self, current_password: str, new_password: str) -> UnlockResult:
        """
        Replace the master password and re-key the vault.

        The vault is re-encrypted under a key derived from the new
        password and a fresh salt before the new hash and salt are
        stored, so data stays readable with the new password only.

        Returns the resulting state. ``data_lost`` is set when a locked
        vault could not be decrypted and was reset on the way.
        """
        with self._lock:
            record = self.config_store.load_password_record()
            if record is None:
                raise NotInitialized("Master password not set")

            self._check_throttle()
            if not EncryptionService.verify_password(current_password, record):
                self._register_failure()
                raise InvalidPassword("Current password is incorrect")
            self.throttle.reset()
            check_master_password_strength(new_password)

            was_unlocked = self.vault_store.is_unlocked
            data_lost = False
            if not was_unlocked:
                data_lost = self._open_vault(current_password).data_lost

            new_record = EncryptionService.hash_password(new_password, self.bcrypt_rounds)
            new_salt = EncryptionService.generate_salt()
            new_key = EncryptionService.derive_key(new_password, new_salt)
            try:
                self.vault_store.rekey(new_key)
            finally:
                EncryptionService.scrub(new_key)
            self.config_store.save_credentials(new_record, new_salt)

            if was_unlocked:
                self._arm_idle_timer()
            else:
                self.vault_store.close()

            self.logger.log_event(
                event_type=EventType.VAULT_PASSWORD_CHANGED,
                severity=EventSeverity.INFO,
                message="Master password changed and vault re-encrypted",
            )
            return UnlockResult(self.state, data_lost=data_lost)

    def touch(self) -> None:
        """Register user activity (restarts the idle timer)."""
        with self._lock:
            if self.vault_store.is_unlocked:
                self._arm_idle_timer()

    # ── Transition helpers ───────────────────────────────────────────

    def _check_throttle(self) -> None:
        try:
            self.throttle.check()
        except RateLimited as exc:
            self.logger.log_event(
                event_type=EventType.VAULT_UNLOCK_RATE_LIMITED,
                severity=EventSeverity.ALERT,
                message=f"Unlock attempt during lockout period ({exc.remaining_seconds}s remaining)",
            )
            raise

    def _register_failure(self) -> None:
        attempts = self.throttle.record_failure()
        self.logger.log_event(
            event_type=EventType.VAULT_UNLOCK_FAILED,
            severity=EventSeverity.INVESTIGATE,
            message=f"Vault unlock failed: incorrect password (attempt {attempts})",
            details={"failed_attempts": attempts},
        )

    def _open_vault(self, master_password: str) -> UnlockResult:
        salt = self.config_store.load_salt()
        key = EncryptionService.derive_key(master_password, salt)
        try:
            outcome = self.vault_store.open(key, recovery_used=self.config_store.recovery_used())
        finally:
            EncryptionService.scrub(key)

        if outcome is OpenOutcome.OPENED:
            return UnlockResult(SessionState.UNLOCKED)

        if outcome is OpenOutcome.FATAL:
            self.logger.log_event(
                event_type=EventType.VAULT_CORRUPTED,
                severity=EventSeverity.CRITICAL,
                message="Vault data unreadable after recovery was already used",
            )
            raise PersistentCorruption(
                "Vault data cannot be decrypted and automatic recovery was already "
                "used once. Manual intervention is required."
            )

        # RECOVERED_EMPTY: start over with a new salt; old data is gone.
        new_salt = EncryptionService.generate_salt()
        new_key = EncryptionService.derive_key(master_password, new_salt)
        try:
            quarantined = self.vault_store.quarantine()
            self.vault_store.initialize(new_key)
        finally:
            EncryptionService.scrub(new_key)
        self.config_store.mark_recovery_used(new_salt)

        self.logger.log_event(
            event_type=EventType.VAULT_RECOVERED,
            severity=EventSeverity.CRITICAL,
            message="Vault could not be decrypted; reset to an empty vault",
            details={"quarantined_file": str(quarantined) if quarantined else None},
        )
        self._emit(SessionEvent.DATA_LOST)
        return UnlockResult(SessionState.UNLOCKED, data_lost=True)

    def _lock_now(self, event: SessionEvent) -> None:
        self._cancel_idle_timer()
        was_unlocked = self.vault_store.is_unlocked
        self.vault_store.close()
        if not was_unlocked:
            return
        auto = event is SessionEvent.AUTO_LOCKED
        self.logger.log_event(
            event_type=EventType.VAULT_AUTO_LOCKED if auto else EventType.VAULT_LOCKED,
            severity=EventSeverity.ALERT if auto else EventSeverity.INFO,
            message="Vault auto-locked after inactivity" if auto else "Vault locked",
        )
        self._emit(event)

    # ── Idle timer ───────────────────────────────────────────────────

    def _arm_idle_timer(self) -> None:
        self._cancel_idle_timer()
        timeout = self.get_settings().idle_timeout
        if timeout <= 0 or not self.vault_store.is_unlocked:
            return
        generation = self._timer_generation
        timer = self._timer_factory(timeout, self._on_idle_timeout, args=(generation,))
        timer.daemon = True
        timer.start()
        self._timer = timer

    def _cancel_idle_timer(self) -> None:
        # Bumping the generation invalidates a callback that already fired.
        self._timer_generation += 1
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _on_idle_timeout(self, generation: int) -> None:
        with self._lock:
            if generation != self._timer_generation:
                return
            self._timer = None
            self._lock_now(SessionEvent.AUTO_LOCKED)

    # ── Settings ─────────────────────────────────────────────────────

    def get_settings(self) -> AppSettings:
        with self._lock:
            if self._settings is None:
                self._settings = self.config_store.load_settings()
            return self._settings

    def save_settings(self, settings: AppSettings) -> AppSettings:
        with self._lock:
            try:
                settings.validate()
            except ValueError as exc:
                raise ValidationError(str(exc)) from exc
            self.config_store.save_settings(settings)
            self._settings = settings
            if self.vault_store.is_unlocked:
                self._arm_idle_timer()
            return settings

    # ── Records ──────────────────────────────────────────────────────

    def _unlocked_store(self) -> VaultStore:
        if not self.vault_store.is_unlocked:
            raise VaultLocked()
        self._arm_idle_timer()
        return self.vault_store

    def save_record(self, record: StoredRecord) -> StoredRecord:
        with self._lock:
            saved = self._unlocked_store().put(record)
            self.logger.log_event(
                event_type=EventType.VAULT_ENTRY_SAVED,
                severity=EventSeverity.INFO,
                message=f"Vault record saved ({type(saved).__name__})",
                details={"record_id": saved.id},
            )
            return saved

    def list_records(self, collection: Collection) -> List[StoredRecord]:
        with self._lock:
            return self._unlocked_store().list(collection)

    def get_record(self, collection: Collection, record_id: str) -> Optional[StoredRecord]:
        with self._lock:
            return self._unlocked_store().get(collection, record_id)

    def delete_record(self, collection: Collection, record_id: str) -> bool:
        with self._lock:
            deleted = self._unlocked_store().delete(collection, record_id)
            if deleted:
                self.logger.log_event(
                    event_type=EventType.VAULT_ENTRY_DELETED,
                    severity=EventSeverity.INFO,
                    message=f"Vault record deleted from {collection.value}",
                    details={"record_id": record_id},
                )
            return deleted

    def apply_batch(self, records: Iterable[StoredRecord]) -> List[StoredRecord]:
        """Save many records atomically (all or none)."""
        with self._lock:
            return self._unlocked_store().apply_batch(records)

    def save_password_entry(self, entry: PasswordEntry) -> PasswordEntry:
        return self.save_record(entry)

    def get_password_entries(self) -> List[PasswordEntry]:
        return self.list_records(Collection.PASSWORDS)

    def delete_password_entry(self, entry_id: str) -> bool:
        return self.delete_record(Collection.PASSWORDS, entry_id)

    def save_totp_entry(self, entry: TotpEntry) -> TotpEntry:
        return self.save_record(entry)

    def get_totp_entries(self) -> List[TotpEntry]:
        return self.list_records(Collection.TOTP)

    def delete_totp_entry(self, entry_id: str) -> bool:
        return self.delete_record(Collection.TOTP, entry_id)

    def save_category(self, category: Category) -> Category:
        return self.save_record(category)

    def get_categories(self) -> List[Category]:
        return self.list_records(Collection.CATEGORIES)

    def delete_category(self, category_id: str) -> bool:
        return self.delete_record(Collection.CATEGORIES, category_id)

    def totp_code(self, entry_id: str, at_time: Optional[float] = None) -> Optional[Dict[str, Any]]:
        entry = self.get_record(Collection.TOTP, entry_id)
        if entry is None:
            return None
        at_time = time.time() if at_time is None else at_time
        return {
            "id": entry.id,
            "code": totp.generate_code(entry, at_time),
            "period": entry.period,
            "seconds_remaining": totp.seconds_remaining(entry.period, at_time),
        }

    def audit_passwords(self) -> AuditReport:
        return audit_passwords(self.get_password_entries())

    def search_passwords(self, criteria: SearchCriteria) -> List[PasswordEntry]:
        return search_passwords(self.get_password_entries(), criteria)


# ── Singleton ────────────────────────────────────────────────────────

_instance: Optional[SessionManager] = None


def get_session_manager() -> SessionManager:
    """Get or create the process-wide SessionManager."""
    global _instance
    if _instance is None:
        _instance = SessionManager(ConfigStore(), VaultStore())
    return _instance


def set_session_manager(instance: Optional[SessionManager]) -> None:
    """Replace the singleton (for testing)."""
    global _instance
    _instance = instance
