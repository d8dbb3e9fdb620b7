"""AES-256-GCM による機密値の暗号化 (仮パスワード等、DBに平文で残さない値)"""
import os
import base64
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from app.core.config import settings

NONCE_SIZE = 12


def _get_key() -> bytes:
    """AESキーをバイト列で取得"""
    key_hex = settings.AES_KEY
    if not key_hex:
        raise ValueError("AES_KEY が設定されていません")
    key = bytes.fromhex(key_hex)
    if len(key) != 32:
        raise ValueError("AES_KEY は32バイト (64桁の16進数) で指定してください")
    return key


def encrypt(plaintext: str) -> str:
    """平文 → base64(nonce + ciphertext)"""
    aesgcm = AESGCM(_get_key())
    nonce = os.urandom(NONCE_SIZE)
    ciphertext = aesgcm.encrypt(nonce, plaintext.encode("utf-8"), None)
    return base64.b64encode(nonce + ciphertext).decode("utf-8")


def decrypt(encrypted: str) -> str:
    """base64(nonce + ciphertext) → 平文"""
    data = base64.b64decode(encrypted)
    plaintext = AESGCM(_get_key()).decrypt(data[:NONCE_SIZE], data[NONCE_SIZE:], None)
    return plaintext.decode("utf-8")

