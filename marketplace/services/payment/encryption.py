"""AES-128-CBC with the pre-shared MITEC key. Wire format: base64(iv || ciphertext)."""
import base64
import binascii
import os

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from marketplace.core.exceptions import EncryptionError

KEY_HEX_LENGTH = 32  # 128-bit key as hex
IV_LENGTH = 16
XML_DECLARATION = "<?xml"


def _key_bytes(key_hex: str) -> bytes:
    key_hex = (key_hex or "").strip()
    if len(key_hex) != KEY_HEX_LENGTH:
        raise EncryptionError("Encryption key must be 32 hex characters")
    try:
        return bytes.fromhex(key_hex)
    except ValueError:
        raise EncryptionError("Encryption key is not valid hex") from None


def encrypt(plaintext: str, key_hex: str) -> str:
    if not plaintext:
        raise EncryptionError("Nothing to encrypt")
    key = _key_bytes(key_hex)
    iv = os.urandom(IV_LENGTH)
    padder = padding.PKCS7(algorithms.AES.block_size).padder()
    padded = padder.update(plaintext.encode("utf-8")) + padder.finalize()
    encryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).encryptor()
    ciphertext = encryptor.update(padded) + encryptor.finalize()
    return base64.b64encode(iv + ciphertext).decode("ascii")


def decrypt(token: str, key_hex: str) -> str:
    """Inverse of encrypt; used for encrypted callback tokens. Leading bytes before ``<?xml`` are dropped."""
    key = _key_bytes(key_hex)
    try:
        raw = base64.b64decode((token or "").strip(), validate=False)
    except (binascii.Error, ValueError):
        raise EncryptionError("Encrypted payload is not valid base64") from None
    if len(raw) <= IV_LENGTH or (len(raw) - IV_LENGTH) % IV_LENGTH:
        raise EncryptionError("Encrypted payload has an invalid length")
    iv, ciphertext = raw[:IV_LENGTH], raw[IV_LENGTH:]
    decryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).decryptor()
    padded = decryptor.update(ciphertext) + decryptor.finalize()
    unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
    try:
        data = unpadder.update(padded) + unpadder.finalize()
    except ValueError:
        raise EncryptionError("Wrong key or corrupted payload") from None
    text = data.decode("utf-8", errors="replace")
    start = text.find(XML_DECLARATION)
    return text[start:] if start > 0 else text
