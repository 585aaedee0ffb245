import base64
import binascii
import json

from cryptography.hazmat.backends import default_backend
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.padding import PKCS7

from .errors import InvalidArgument

# base64 text of a 16 bytes AES-128 key or IV
B64_KEY_LENGTH = 24


def _b64decode(value: str, name: str) -> bytes:
    try:
        return base64.b64decode(value)
    except (binascii.Error, ValueError) as e:
        raise InvalidArgument(f"Bad base64 {name}") from e


def decrypt_data(encrypted_data: str, iv: str, session_key: str) -> dict:
    """Decrypt a mini-program payload encrypted with the user's session key.

    ``session_key`` and ``iv`` are base64 encoded 16 bytes values, the payload
    is AES-128-CBC with PKCS#7 padding and holds a JSON object.
    """
    if len(session_key) != B64_KEY_LENGTH:
        raise InvalidArgument("Bad session_key format")
    if len(iv) != B64_KEY_LENGTH:
        raise InvalidArgument("Bad iv format")

    aes_key = _b64decode(session_key, "session_key")
    aes_iv = _b64decode(iv, "iv")
    cipher_text = _b64decode(encrypted_data, "encrypted_data")

    try:
        decryptor = Cipher(
            algorithms.AES(aes_key), modes.CBC(aes_iv), backend=default_backend(),
        ).decryptor()
        data = decryptor.update(cipher_text) + decryptor.finalize()
        unpadder = PKCS7(algorithms.AES.block_size).unpadder()
        data = unpadder.update(data) + unpadder.finalize()
    except ValueError as e:
        raise InvalidArgument("Failed to decrypt data") from e

    try:
        data = json.loads(data)
    except ValueError as e:
        raise InvalidArgument("Failed to deserialize data") from e
    if not data or not isinstance(data, dict):
        raise InvalidArgument("Failed to deserialize data")
    return data
