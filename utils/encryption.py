"""
Journal encryption at rest.

AES-256-GCM via ``cryptography``. The key is read from
``JOURNAL_ENCRYPTION_KEY`` (64 hex chars). Without it an ephemeral key is
generated, so sealed journals cannot be opened after a restart.
"""

import base64
import os
from dataclasses import asdict, dataclass
from typing import Dict, Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from dotenv import load_dotenv

from utils.errors import JournalVaultError
from utils.logger import setup_logger

load_dotenv()
logger = setup_logger('encryption', 'logs/encryption.log')

KEY_ENV_VAR = 'JOURNAL_ENCRYPTION_KEY'
NONCE_SIZE = 12
TAG_SIZE = 16


@dataclass(frozen=True)
class SealedJournal:
    """Base64 ciphertext, nonce and authentication tag"""
    ciphertext: str
    iv: str
    auth_tag: str

    def to_dict(self) -> Dict[str, str]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, str]) -> 'SealedJournal':
        return cls(ciphertext=data['ciphertext'], iv=data['iv'], auth_tag=data['auth_tag'])


class JournalVault:
    """Seal and open journal text"""

    def __init__(self, key: Optional[bytes] = None):
        if key is None:
            key = self._load_key()

        if len(key) != 32:
            raise JournalVaultError("Journal encryption key must be 32 bytes")

        self._aead = AESGCM(key)
        logger.info("Journal vault initialized")

    @staticmethod
    def _load_key() -> bytes:
        hex_key = os.environ.get(KEY_ENV_VAR)

        if not hex_key:
            logger.warning(
                f"{KEY_ENV_VAR} not set - using an ephemeral key. "
                "Journals sealed in this process cannot be opened after restart."
            )
            return AESGCM.generate_key(bit_length=256)

        try:
            return bytes.fromhex(hex_key)
        except ValueError as e:
            raise JournalVaultError(f"{KEY_ENV_VAR} must be hex encoded") from e

    def seal(self, text: str) -> SealedJournal:
        nonce = os.urandom(NONCE_SIZE)
        sealed = self._aead.encrypt(nonce, text.encode('utf-8'), None)
        ciphertext, tag = sealed[:-TAG_SIZE], sealed[-TAG_SIZE:]

        return SealedJournal(
            ciphertext=base64.b64encode(ciphertext).decode('ascii'),
            iv=base64.b64encode(nonce).decode('ascii'),
            auth_tag=base64.b64encode(tag).decode('ascii')
        )

    def open(self, sealed: SealedJournal) -> str:
        try:
            nonce = base64.b64decode(sealed.iv)
            payload = base64.b64decode(sealed.ciphertext) + base64.b64decode(sealed.auth_tag)
            return self._aead.decrypt(nonce, payload, None).decode('utf-8')
        except (InvalidTag, ValueError) as e:
            logger.error("Failed to open sealed journal")
            raise JournalVaultError("Journal could not be decrypted") from e
