"""Tests for the per-format import parsers and candidate validation."""

import base64
import hashlib
import hmac
import json
import os
from datetime import datetime, timezone

import pytest
from cryptography.hazmat.primitives import hashes, padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.kdf.hkdf import HKDFExpand
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from secure_vault.interchange.importers import (
    ImportCandidate,
    classify,
    extract_domain,
    parse_bitwarden_json,
    parse_chrome_csv,
    parse_firefox_json,
    parse_generic_csv,
    parse_generic_json,
    parse_keepass_csv,
    parse_lastpass_csv,
    parse_winauth_txt,
)
from secure_vault.interchange.sanitize import process_entries, sanitize_string, sanitize_url
from secure_vault.vault.exceptions import DecryptionError, PasswordRequired, UnsupportedFormat
from secure_vault.vault.models import PasswordEntry, RecordKind, TotpEntry

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def bitwarden_protected_export(payload, password, salt="bw-export-salt", iterations=1000):
    """Build a password-protected Bitwarden export the way the Bitwarden client does."""
    master = PBKDF2HMAC(
        algorithm=hashes.SHA256(), length=32, salt=salt.encode("utf-8"), iterations=iterations,
    ).derive(password.encode("utf-8"))
    enc_key = HKDFExpand(algorithm=hashes.SHA256(), length=32, info=b"enc").derive(master)
    mac_key = HKDFExpand(algorithm=hashes.SHA256(), length=32, info=b"mac").derive(master)

    def cipher_string(plaintext: bytes) -> str:
        iv = os.urandom(16)
        padder = padding.PKCS7(128).padder()
        padded = padder.update(plaintext) + padder.finalize()
        encryptor = Cipher(algorithms.AES(enc_key), modes.CBC(iv)).encryptor()
        ciphertext = encryptor.update(padded) + encryptor.finalize()
        mac = hmac.new(mac_key, iv + ciphertext, hashlib.sha256).digest()
        parts = [base64.b64encode(p).decode("ascii") for p in (iv, ciphertext, mac)]
        return "2." + "|".join(parts)

    return json.dumps({
        "encrypted": True,
        "passwordProtected": True,
        "salt": salt,
        "kdfType": 0,
        "kdfIterations": iterations,
        "encKeyValidation_DO_NOT_EDIT": cipher_string(b"validation"),
        "data": cipher_string(json.dumps(payload).encode("utf-8")),
    })


BITWARDEN_PLAIN = {
    "encrypted": False,
    "folders": [{"id": "f-1", "name": "Banking"}],
    "items": [
        {
            "type": 1,
            "name": "Bank",
            "notes": "branch 12",
            "folderId": "f-1",
            "login": {
                "username": "alice",
                "password": "hunter2!",
                "uris": [{"match": None, "uri": "https://bank.example"}],
            },
        },
        {"type": 1, "name": "Orphan", "folderId": "f-9", "login": {"password": "x1"}},
        {"type": 1, "name": "Loose", "login": {"password": "x2", "uris": []}},
        {"type": 2, "name": "Secure note", "secureNote": {"type": 0}},
    ],
}


class TestLastPass:

    def test_import_row(self):
        content = (
            "url,username,password,totp,extra,name,grouping,fav\n"
            "https://x.com,bob,secret1,,note,Site X,Work,0\n"
        )
        batch = parse_lastpass_csv(content)
        assert batch.errors == []
        assert len(batch.candidates) == 1
        candidate = batch.candidates[0]
        assert candidate.kind is RecordKind.PASSWORD
        assert candidate.fields == {
            "name": "Site X",
            "url": "https://x.com",
            "username": "bob",
            "password": "secret1",
            "notes": "note",
            "category": "Work",
            "tags": ["lastpass"],
        }

        result = process_entries(batch.candidates, now=NOW)
        entry = result.valid[0]
        assert isinstance(entry, PasswordEntry)
        assert (entry.name, entry.url, entry.username, entry.password) == (
            "Site X", "https://x.com", "bob", "secret1"
        )
        assert entry.notes == "note"
        assert entry.category == "Work"
        assert entry.tags == ["lastpass"]
        assert entry.created == entry.modified == NOW
        assert entry.id

    def test_short_row_reported(self):
        content = "url,username,password,totp,extra,name\nhttps://a.com,bob\nhttps://b.com,c,p,,,B\n"
        batch = parse_lastpass_csv(content)
        assert len(batch.candidates) == 1
        assert batch.errors == ["Line 2: expected at least 6 columns, got 2"]

    def test_quoted_multiline_note(self):
        content = (
            "url,username,password,totp,extra,name,grouping,fav\n"
            'https://x.com,bob,pw,,"line 1\nline 2, with comma",Site,,0\n'
        )
        fields = parse_lastpass_csv(content).candidates[0].fields
        assert fields["notes"] == "line 1\nline 2, with comma"
        assert fields["category"] == "Imported"


class TestKeePassAndChrome:

    def test_keepass(self):
        content = '"Title","Username","Password","URL","Notes"\n"Mail","me","pw","mail.example","n"\n'
        fields = parse_keepass_csv(content).candidates[0].fields
        assert fields["name"] == "Mail"
        assert fields["url"] == "mail.example"
        assert fields["notes"] == "n"

    def test_chrome_name_falls_back_to_domain(self):
        content = "name,url,username,password\n,https://accounts.example.com/login,me,pw\n"
        fields = parse_chrome_csv(content).candidates[0].fields
        assert fields["name"] == "accounts.example.com"
        assert fields["category"] == "Chrome Import"
        assert fields["tags"] == ["chrome"]


class TestGenericCsv:

    def test_columns_by_header(self):
        content = "Title,Email,Pass,Website,Folder,Tags\nForum,me@x.org,pw,forum.x.org,Social,a;b\n"
        fields = parse_generic_csv(content).candidates[0].fields
        assert fields["name"] == "Forum"
        assert fields["username"] == "me@x.org"
        assert fields["password"] == "pw"
        assert fields["url"] == "forum.x.org"
        assert fields["category"] == "Social"
        assert fields["tags"] == ["a", "b"]

    def test_username_column_not_taken_for_name(self):
        content = "username,name,password\nbob,Site,pw\n"
        fields = parse_generic_csv(content).candidates[0].fields
        assert fields["name"] == "Site"
        assert fields["username"] == "bob"

    def test_empty_file(self):
        assert parse_generic_csv("").candidates == []


class TestWinAuth:

    def test_otpauth_line(self):
        content = (
            "otpauth://totp/Example:bob@example.com?secret=JBSWY3DPEHPK3PXP"
            "&issuer=Example&digits=6&period=30\n"
        )
        batch = parse_winauth_txt(content)
        result = process_entries(batch.candidates, now=NOW)
        entry = result.valid[0]
        assert isinstance(entry, TotpEntry)
        assert entry.issuer == "Example"
        assert entry.name == "bob@example.com"
        assert entry.secret == "JBSWY3DPEHPK3PXP"
        assert (entry.digits, entry.period) == (6, 30)
        assert entry.tags == ["winauth", "totp"]

    def test_bad_lines_do_not_stop_batch(self):
        content = "\n".join([
            "# comment",
            "otpauth://hotp/a?secret=JBSWY3DPEHPK3PXP&counter=0",
            "otpauth://totp/b?issuer=x",
            "otpauth://totp/c?secret=JBSWY3DPEHPK3PXP",
        ])
        batch = parse_winauth_txt(content)
        assert [c.fields["name"] for c in batch.candidates] == ["c"]
        assert len(batch.errors) == 1
        assert batch.errors[0].startswith("Line 3:")


class TestFirefox:

    def test_logins(self):
        content = json.dumps({"logins": [
            {"hostname": "https://shop.example", "username": "u", "password": "p"},
            "garbage",
        ]})
        batch = parse_firefox_json(content)
        assert batch.candidates[0].fields["name"] == "shop.example"
        assert batch.errors == ["Login 1: not an object"]

    def test_malformed_json(self):
        with pytest.raises(UnsupportedFormat):
            parse_firefox_json("{not json")


class TestBitwarden:

    def test_plain_export(self):
        batch = parse_bitwarden_json(json.dumps(BITWARDEN_PLAIN))
        names = [c.fields["name"] for c in batch.candidates]
        assert names == ["Bank", "Orphan", "Loose"]

        bank = batch.candidates[0].fields
        assert bank["url"] == "https://bank.example"
        assert bank["username"] == "alice"
        assert bank["notes"] == "branch 12"
        assert bank["category"] == "Banking"
        assert batch.candidates[1].fields["category"] == "Folder_f-9"
        assert batch.candidates[2].fields["category"] == "Imported"

    def test_malformed_item_reported(self):
        data = {"items": [{"name": "no type"}, BITWARDEN_PLAIN["items"][0]]}
        batch = parse_bitwarden_json(json.dumps(data))
        assert len(batch.candidates) == 1
        assert batch.errors[0].startswith("Item 0:")

    def test_password_protected_export(self):
        content = bitwarden_protected_export(BITWARDEN_PLAIN, "export-pass")
        batch = parse_bitwarden_json(content, "export-pass")
        assert [c.fields["name"] for c in batch.candidates] == ["Bank", "Orphan", "Loose"]

    def test_protected_export_wrong_password(self):
        content = bitwarden_protected_export(BITWARDEN_PLAIN, "export-pass")
        with pytest.raises(DecryptionError):
            parse_bitwarden_json(content, "other-pass")

    def test_protected_export_needs_password(self):
        content = bitwarden_protected_export(BITWARDEN_PLAIN, "export-pass")
        with pytest.raises(PasswordRequired):
            parse_bitwarden_json(content)

    def test_account_encrypted_rejected(self):
        content = json.dumps({"encrypted": True, "data": "2.a|b|c"})
        with pytest.raises(UnsupportedFormat):
            parse_bitwarden_json(content, "pw")

    def test_argon2_rejected(self):
        data = json.loads(bitwarden_protected_export(BITWARDEN_PLAIN, "pw"))
        data["kdfType"] = 1
        with pytest.raises(UnsupportedFormat):
            parse_bitwarden_json(json.dumps(data), "pw")


class TestGenericJson:

    def test_list_of_entries(self):
        content = json.dumps([
            {"title": "Site", "user": "me", "pass": "pw"},
            {"name": "Auth", "issuer": "Corp", "secret": "JBSWY3DPEHPK3PXP"},
        ])
        batch = parse_generic_json(content)
        kinds = [c.kind for c in batch.candidates]
        assert kinds == [RecordKind.PASSWORD, RecordKind.TOTP]
        assert batch.candidates[0].fields["username"] == "me"

    def test_older_backup_shape(self):
        content = json.dumps({
            "passwordEntries": [{"name": "Site", "password": "pw"}],
            "totpEntries": [{"name": "Auth", "secret": "JBSWY3DPEHPK3PXP"}],
        })
        batch = parse_generic_json(content)
        assert [c.kind for c in batch.candidates] == [RecordKind.PASSWORD, RecordKind.TOTP]

    def test_native_export_shape(self):
        content = json.dumps({"version": "1.0", "entries": [{"name": "Site", "password": "pw"}]})
        assert len(parse_generic_json(content).candidates) == 1

    def test_unrecognized_structure(self):
        with pytest.raises(UnsupportedFormat):
            parse_generic_json(json.dumps({"something": 1}))


class TestProcessEntries:

    def test_rejects_missing_password_and_secret(self):
        candidates = [
            ImportCandidate(RecordKind.PASSWORD, {"name": "No password", "password": ""}),
            ImportCandidate(RecordKind.PASSWORD, {"name": "Fine", "password": "pw"}),
            ImportCandidate(RecordKind.TOTP, {"name": "No secret", "secret": ""}),
        ]
        result = process_entries(candidates, now=NOW)
        assert [r.name for r in result.valid] == ["Fine"]
        assert len(result.invalid) == 2
        assert result.errors == [
            "Password entry missing required fields: No password",
            "TOTP entry missing required fields: No secret",
        ]

    def test_invalid_totp_parameters_rejected(self):
        candidates = [ImportCandidate(
            RecordKind.TOTP, {"name": "x", "secret": "JBSWY3DPEHPK3PXP", "digits": 7},
        )]
        result = process_entries(candidates, now=NOW)
        assert result.valid == []
        assert "digits" in result.errors[0]

    def test_fields_sanitized(self):
        candidates = [ImportCandidate(RecordKind.PASSWORD, {
            "name": "  Site  ",
            "password": "pw",
            "url": "example.com",
            "notes": "n" * 2000,
            "category": "",
        })]
        entry = process_entries(candidates, now=NOW).valid[0]
        assert entry.name == "Site"
        assert entry.url == "https://example.com"
        assert len(entry.notes) == 1000
        assert entry.category == "Imported"

    def test_ids_are_unique(self):
        candidates = [
            ImportCandidate(RecordKind.PASSWORD, {"name": "a", "password": "pw"}),
            ImportCandidate(RecordKind.PASSWORD, {"name": "b", "password": "pw"}),
        ]
        valid = process_entries(candidates, now=NOW).valid
        assert valid[0].id != valid[1].id


class TestHelpers:

    def test_classify(self):
        assert classify({"secret": "X", "issuer": ""}).kind is RecordKind.TOTP
        assert classify({"secret": "X"}).kind is RecordKind.PASSWORD
        assert classify({"password": "p"}).kind is RecordKind.PASSWORD

    @pytest.mark.parametrize("url,expected", [
        ("https://www.example.com/path", "www.example.com"),
        ("example.com/login", "example.com"),
        ("", ""),
    ])
    def test_extract_domain(self, url, expected):
        assert extract_domain(url) == expected

    def test_sanitize_helpers(self):
        assert sanitize_string(None) == ""
        assert sanitize_url("ftp://files.example") == "ftp://files.example"
        assert sanitize_url("  ") == ""
