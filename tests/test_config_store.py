"""Tests for the unencrypted vault config store.

Covers:
  - Database creation and key/value access
  - Credentials (hash + salt) persistence
  - Recovery flag
  - Settings round trip
  - Corruption detection
"""

import pytest

from secure_vault.core.config import AppSettings
from secure_vault.vault.config_store import (
    KEY_ENCRYPTION_SALT,
    KEY_PASSWORD_HASH,
    KEY_SETTINGS,
    ConfigStore,
)
from secure_vault.vault.encryption import EncryptionService
from secure_vault.vault.exceptions import CorruptConfig


class TestKeyValue:

    def test_creates_db_file(self, tmp_path):
        ConfigStore(db_path=tmp_path / "sub" / "config.db")
        assert (tmp_path / "sub" / "config.db").exists()

    def test_default_path_uses_data_dir(self, tmp_path):
        store = ConfigStore()
        assert store.db_path == tmp_path / "data" / "config.db"

    def test_get_default(self, config_store):
        assert config_store.get("missing") is None
        assert config_store.get("missing", "fallback") == "fallback"

    def test_set_many_and_upsert(self, config_store):
        config_store.set_many({"a": "1", "b": "2"})
        config_store.set("a", "3")
        assert config_store.get("a") == "3"
        assert config_store.get("b") == "2"

    def test_delete(self, config_store):
        config_store.set("x", "1")
        assert config_store.delete("x") is True
        assert config_store.delete("x") is False

    def test_garbage_file_is_corrupt_config(self, tmp_path):
        path = tmp_path / "config.db"
        path.write_bytes(b"this is not sqlite" * 100)
        with pytest.raises(CorruptConfig):
            ConfigStore(db_path=path)


class TestCredentials:

    def test_not_setup_initially(self, config_store):
        assert config_store.is_setup() is False
        assert config_store.load_password_record() is None

    def test_save_and_load(self, config_store):
        record = EncryptionService.hash_password("pw", rounds=4)
        salt = EncryptionService.generate_salt()
        config_store.save_credentials(record, salt)

        assert config_store.is_setup() is True
        assert config_store.load_password_record().hash == record.hash
        assert config_store.load_salt() == salt

    def test_missing_salt_is_corrupt(self, config_store):
        with pytest.raises(CorruptConfig):
            config_store.load_salt()

    def test_non_hex_salt_is_corrupt(self, config_store):
        config_store.set(KEY_ENCRYPTION_SALT, "zz-not-hex")
        with pytest.raises(CorruptConfig):
            config_store.load_salt()

    def test_short_salt_is_corrupt(self, config_store):
        config_store.set(KEY_ENCRYPTION_SALT, "00" * 8)
        with pytest.raises(CorruptConfig):
            config_store.load_salt()

    def test_malformed_hash_is_corrupt(self, config_store):
        config_store.set(KEY_PASSWORD_HASH, "garbage")
        with pytest.raises(CorruptConfig):
            config_store.load_password_record()


class TestRecoveryFlag:

    def test_default_false(self, config_store):
        assert config_store.recovery_used() is False

    def test_mark_sets_flag_and_salt(self, config_store):
        salt = EncryptionService.generate_salt()
        config_store.mark_recovery_used(salt)
        assert config_store.recovery_used() is True
        assert config_store.load_salt() == salt


class TestSettings:

    def test_defaults(self, config_store):
        settings = config_store.load_settings()
        assert settings == AppSettings()
        assert settings.idle_timeout == 1800

    def test_roundtrip(self, config_store):
        config_store.save_settings(AppSettings(auto_lock_timeout=60, clipboard_timeout=10))
        loaded = config_store.load_settings()
        assert loaded.auto_lock_timeout == 60
        assert loaded.clipboard_timeout == 10

    def test_disabled_auto_lock_has_no_timeout(self):
        assert AppSettings(auto_lock_enabled=False).idle_timeout == 0

    def test_unknown_keys_ignored(self, config_store):
        config_store.set(KEY_SETTINGS, '{"auto_lock_timeout": 5, "theme": "dark"}')
        assert config_store.load_settings().auto_lock_timeout == 5

    @pytest.mark.parametrize("raw", ["{not json", "[1, 2]", '{"auto_lock_timeout": -1}'])
    def test_malformed_settings_are_corrupt(self, config_store, raw):
        config_store.set(KEY_SETTINGS, raw)
        with pytest.raises(CorruptConfig):
            config_store.load_settings()

    def test_invalid_settings_not_saved(self, config_store):
        with pytest.raises(ValueError):
            config_store.save_settings(AppSettings(auto_lock_timeout=-5))
