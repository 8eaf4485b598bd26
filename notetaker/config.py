"""Encrypted persistence of provider credentials.

The configuration is only ever written encrypted. A random root key is created
once next to the envelope and every save derives a fresh AES-256-GCM key from
it with scrypt and a new salt.

Envelope layout: ``salt (32) | iv (16) | tag (16) | ciphertext``.
"""

from __future__ import annotations

import json
import logging
import os
import secrets
from dataclasses import asdict, fields
from pathlib import Path
from typing import Any

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

from .models import Config

APP_DIR = Path(os.getenv("NOTETAKER_HOME", Path.home() / ".notetaker")).expanduser()

KEY_LENGTH = 32
SALT_LENGTH = 32
IV_LENGTH = 16
TAG_LENGTH = 16
HEADER_LENGTH = SALT_LENGTH + IV_LENGTH + TAG_LENGTH

# scrypt cost parameters; n=2**14 needs 16 MiB of memory per derivation.
SCRYPT_N = 2**14
SCRYPT_R = 8
SCRYPT_P = 1


class ConfigError(RuntimeError):
    """Raised when configuration cannot be updated."""


class EnvelopeError(ValueError):
    """Raised when an envelope is malformed or fails authentication."""


def _derive_key(root_key: bytes, salt: bytes) -> bytes:
    kdf = Scrypt(salt=salt, length=KEY_LENGTH, n=SCRYPT_N, r=SCRYPT_R, p=SCRYPT_P)
    return kdf.derive(root_key)


def encrypt(plaintext: bytes, root_key: bytes) -> bytes:
    salt = secrets.token_bytes(SALT_LENGTH)
    iv = secrets.token_bytes(IV_LENGTH)
    sealed = AESGCM(_derive_key(root_key, salt)).encrypt(iv, plaintext, None)
    # AESGCM appends the tag; the envelope stores it ahead of the ciphertext.
    ciphertext, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]
    return salt + iv + tag + ciphertext


def decrypt(envelope: bytes, root_key: bytes) -> bytes:
    if len(envelope) < HEADER_LENGTH:
        raise EnvelopeError(f"Envelope too short ({len(envelope)} bytes)")
    salt = envelope[:SALT_LENGTH]
    iv = envelope[SALT_LENGTH : SALT_LENGTH + IV_LENGTH]
    tag = envelope[SALT_LENGTH + IV_LENGTH : HEADER_LENGTH]
    ciphertext = envelope[HEADER_LENGTH:]
    try:
        return AESGCM(_derive_key(root_key, salt)).decrypt(iv, ciphertext + tag, None)
    except InvalidTag as exc:
        raise EnvelopeError("Envelope failed authentication") from exc


def _write_private(path: Path, data: bytes) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "wb") as fh:
        fh.write(data)
    os.chmod(path, 0o600)


def _config_from_payload(payload: Any) -> Config:
    if not isinstance(payload, dict):
        raise ValueError("Configuration payload is not an object")
    known = {f.name for f in fields(Config)}
    values = {k: v for k, v in payload.items() if k in known and isinstance(v, str)}
    return Config(**values)


class CredentialVault:
    """Load and save the encrypted :class:`Config` under ``app_dir``."""

    def __init__(self, app_dir: Path = APP_DIR) -> None:
        self.app_dir = Path(app_dir)
        self.config_path = self.app_dir / "config.enc"
        self.key_path = self.app_dir / ".key"
        self._root_key = self._load_or_create_key()

    def _load_or_create_key(self) -> bytes:
        try:
            key = self.key_path.read_bytes()
        except FileNotFoundError:
            key = b""
        except OSError as exc:
            logging.warning("Unable to read encryption key %s: %s", self.key_path, exc)
            key = b""

        if len(key) == KEY_LENGTH:
            return key
        if key:
            logging.warning("Encryption key %s has an unexpected length; replacing it.", self.key_path)

        key = secrets.token_bytes(KEY_LENGTH)
        _write_private(self.key_path, key)
        return key

    def load(self) -> Config:
        """Return the stored configuration, or defaults if it is absent or unreadable."""

        if not self.config_path.exists():
            return Config()
        try:
            plaintext = decrypt(self.config_path.read_bytes(), self._root_key)
            return _config_from_payload(json.loads(plaintext.decode("utf-8")))
        except (OSError, EnvelopeError, UnicodeDecodeError, ValueError, TypeError) as exc:
            logging.warning("Error reading configuration, using defaults: %s", exc)
            return Config()

    def save(self, config: Config) -> None:
        plaintext = json.dumps(asdict(config), indent=2).encode("utf-8")
        _write_private(self.config_path, encrypt(plaintext, self._root_key))

    def update(self, **kwargs: Any) -> Config:
        config = self.load()
        for key, value in kwargs.items():
            if hasattr(config, key):
                setattr(config, key, value)
            else:
                raise ConfigError(f"Unknown configuration key: {key}")
        self.save(config)
        return config


def mask_secret(value: str) -> str:
    if not value:
        return ""
    if len(value) <= 8:
        return "*" * len(value)
    return f"{value[:3]}...{value[-4:]}"
