"""Credential Vault - mã hóa API key của provider khi lưu trữ.

Blob layout (hex encoded): salt(64) || iv(16) || tag(16) || ciphertext
"""

import os
from functools import lru_cache

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.backends import default_backend
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from .config import settings
from .exceptions.service_exceptions import DecryptionError

SALT_LENGTH = 64
IV_LENGTH = 16
TAG_LENGTH = 16
KEY_LENGTH = 32
MIN_ITERATIONS = 100_000


class CredentialVault:
    def __init__(self, secret_key: str, iterations: int = MIN_ITERATIONS):
        if not secret_key:
            raise ValueError("Vault secret key must not be empty")
        if iterations < MIN_ITERATIONS:
            raise ValueError(f"Vault requires at least {MIN_ITERATIONS} KDF iterations")
        self.secret_key = secret_key.encode("utf-8")
        self.iterations = iterations

    def _derive_key(self, salt: bytes) -> bytes:
        """Dẫn xuất khóa AES-256 từ secret và salt"""
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA512(),
            length=KEY_LENGTH,
            salt=salt,
            iterations=self.iterations,
            backend=default_backend(),
        )
        return kdf.derive(self.secret_key)

    def encrypt(self, plaintext: str) -> str:
        """Mã hóa plaintext bằng AES-GCM với salt và IV ngẫu nhiên mỗi lần gọi"""
        salt = os.urandom(SALT_LENGTH)
        iv = os.urandom(IV_LENGTH)

        cipher = Cipher(
            algorithms.AES(self._derive_key(salt)),
            modes.GCM(iv),
            backend=default_backend(),
        )
        encryptor = cipher.encryptor()
        ciphertext = encryptor.update(plaintext.encode("utf-8")) + encryptor.finalize()

        return (salt + iv + encryptor.tag + ciphertext).hex()

    def decrypt(self, blob: str) -> str:
        """Giải mã blob; mọi lỗi cấu trúc hoặc sai tag đều là DecryptionError"""
        try:
            raw = bytes.fromhex(blob)
        except (TypeError, ValueError):
            raise DecryptionError() from None

        header_length = SALT_LENGTH + IV_LENGTH + TAG_LENGTH
        if len(raw) < header_length:
            raise DecryptionError()

        salt = raw[:SALT_LENGTH]
        iv = raw[SALT_LENGTH : SALT_LENGTH + IV_LENGTH]
        tag = raw[SALT_LENGTH + IV_LENGTH : header_length]
        ciphertext = raw[header_length:]

        cipher = Cipher(
            algorithms.AES(self._derive_key(salt)),
            modes.GCM(iv, tag),
            backend=default_backend(),
        )
        decryptor = cipher.decryptor()
        try:
            plaintext = decryptor.update(ciphertext) + decryptor.finalize()
            return plaintext.decode("utf-8")
        except (InvalidTag, UnicodeDecodeError):
            raise DecryptionError() from None


@lru_cache(maxsize=1)
def get_vault() -> CredentialVault:
    """Vault dùng chung cho toàn tiến trình (secret nạp một lần khi khởi động)"""
    return CredentialVault(
        secret_key=settings.ENCRYPTION_KEY,
        iterations=settings.VAULT_KDF_ITERATIONS,
    )
