"""At-rest sealing for secrets kept in ``config.json``.

Values are encrypted with Fernet from the ``cryptography`` library and stored
as ``"ENC:<token>"``. Plain values written by hand (or seeded from the
environment) are accepted on load and sealed on the next save.

The key lives next to the config as ``.key`` with owner-only permissions.
"""

import logging
import os
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken

from .config import config_dir

logger = logging.getLogger(__name__)

_ENC_PREFIX = "ENC:"

_fernet: Optional[Fernet] = None


def set_strict_permissions(filepath) -> None:
    """chmod 600 *filepath*; failures are logged, not raised."""
    try:
        os.chmod(str(filepath), 0o600)
    except OSError as e:
        logger.warning("Failed to set permissions on %s: %s", filepath, e)


def _load_or_create_key() -> bytes:
    key_file = config_dir() / ".key"
    key_file.parent.mkdir(parents=True, exist_ok=True)
    if key_file.exists():
        key = key_file.read_bytes().strip()
        try:
            Fernet(key)
            return key
        except ValueError:
            logger.warning("Invalid key file at %s, generating a new one", key_file)

    key = Fernet.generate_key()
    key_file.write_bytes(key)
    set_strict_permissions(key_file)
    logger.info("Generated new encryption key at %s", key_file)
    return key


def _get_fernet() -> Fernet:
    global _fernet
    if _fernet is None:
        _fernet = Fernet(_load_or_create_key())
    return _fernet


def reset_key_cache() -> None:
    global _fernet
    _fernet = None


def seal(plaintext: str) -> str:
    if not plaintext or plaintext.startswith(_ENC_PREFIX):
        return plaintext
    token = _get_fernet().encrypt(plaintext.encode("utf-8"))
    return _ENC_PREFIX + token.decode("ascii")


def unseal(value: str) -> str:
    """Return the plaintext of *value*.

    Unsealed values pass through unchanged. A token that no longer decrypts
    (the key file was replaced) yields ``""`` so the secret can be re-entered.
    """
    if not value or not value.startswith(_ENC_PREFIX):
        return value
    token = value[len(_ENC_PREFIX):]
    try:
        return _get_fernet().decrypt(token.encode("ascii")).decode("utf-8")
    except InvalidToken:
        logger.warning("Could not decrypt a sealed config value; treating it as empty")
        return ""
