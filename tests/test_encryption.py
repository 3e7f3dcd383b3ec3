"""
Tests for journal sealing.
"""

import base64
import os

import pytest

from utils.encryption import KEY_ENV_VAR, JournalVault, SealedJournal
from utils.errors import JournalVaultError


class TestJournalVault:

    def test_seal_and_open(self, vault):
        sealed = vault.seal("I felt tired but hopeful today")
        assert "hopeful" not in sealed.ciphertext
        assert vault.open(sealed) == "I felt tired but hopeful today"

    def test_unicode_text(self, vault):
        text = 'آج میں بہتر محسوس کر رہی ہوں'
        assert vault.open(vault.seal(text)) == text

    def test_nonce_is_fresh_per_seal(self, vault):
        first = vault.seal("same text")
        second = vault.seal("same text")
        assert first.iv != second.iv
        assert first.ciphertext != second.ciphertext

    def test_tampered_ciphertext_is_rejected(self, vault):
        sealed = vault.seal("private")
        raw = bytearray(base64.b64decode(sealed.ciphertext))
        raw[0] ^= 0xFF
        tampered = SealedJournal(
            ciphertext=base64.b64encode(bytes(raw)).decode('ascii'),
            iv=sealed.iv,
            auth_tag=sealed.auth_tag
        )
        with pytest.raises(JournalVaultError):
            vault.open(tampered)

    def test_other_key_cannot_open(self, vault):
        sealed = vault.seal("private")
        with pytest.raises(JournalVaultError):
            JournalVault(key=os.urandom(32)).open(sealed)

    def test_dict_round_trip(self, vault):
        sealed = vault.seal("notes")
        assert vault.open(SealedJournal.from_dict(sealed.to_dict())) == "notes"

    def test_rejects_short_key(self):
        with pytest.raises(JournalVaultError):
            JournalVault(key=b'short')

    def test_key_from_environment(self, monkeypatch):
        key = os.urandom(32)
        monkeypatch.setenv(KEY_ENV_VAR, key.hex())

        sealed = JournalVault().seal("from env")

        assert JournalVault(key=key).open(sealed) == "from env"

    def test_malformed_environment_key(self, monkeypatch):
        monkeypatch.setenv(KEY_ENV_VAR, 'not-hex')
        with pytest.raises(JournalVaultError):
            JournalVault()
