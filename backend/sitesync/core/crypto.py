from __future__ import annotations

import base64
import hashlib
import hmac as _hmac
from functools import lru_cache

from cryptography.fernet import Fernet


def hmac_hex(secret: str, value: str) -> str:
    return _hmac.new(secret.encode('utf-8'), value.encode('utf-8'), hashlib.sha256).hexdigest()


@lru_cache(maxsize=8)
def _fernet_for(key_seed: str) -> Fernet:
    digest = hashlib.sha256(key_seed.encode('utf-8')).digest()
    return Fernet(base64.urlsafe_b64encode(digest))


def encrypt(key_seed: str, value: str) -> str:
    return _fernet_for(key_seed).encrypt(value.encode('utf-8')).decode('utf-8')


def decrypt(key_seed: str, token: str) -> str:
    return _fernet_for(key_seed).decrypt(token.encode('utf-8')).decode('utf-8')
