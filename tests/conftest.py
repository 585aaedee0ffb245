import base64
import json

import httpx
import pytest
from cryptography.hazmat.backends import default_backend
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.padding import PKCS7

SESSION_KEY = base64.b64encode(b"0123456789abcdef").decode()
IV = base64.b64encode(b"fedcba9876543210").decode()


class FakeProvider:
    """Answers requests by endpoint (scheme, host and path, no query)."""

    def __init__(self):
        self.routes = {}
        self.requests = []

    def add(self, url, json=None, status_code=200, text=None):
        self.routes[url] = (status_code, json, text)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        url = f"{request.url.scheme}://{request.url.host}{request.url.path}"
        if url not in self.routes:
            return httpx.Response(404, text="not found")
        status_code, data, text = self.routes[url]
        if text is not None:
            return httpx.Response(status_code, text=text)
        return httpx.Response(status_code, json=data)

    @property
    def last(self) -> httpx.Request:
        return self.requests[-1]


def encrypt_raw(plain: bytes, key=SESSION_KEY, iv=IV) -> str:
    padder = PKCS7(algorithms.AES.block_size).padder()
    plain = padder.update(plain) + padder.finalize()
    encryptor = Cipher(
        algorithms.AES(base64.b64decode(key)),
        modes.CBC(base64.b64decode(iv)),
        backend=default_backend(),
    ).encryptor()
    return base64.b64encode(encryptor.update(plain) + encryptor.finalize()).decode()


def encrypt(data, key=SESSION_KEY, iv=IV) -> str:
    return encrypt_raw(json.dumps(data).encode(), key, iv)


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def http_client(provider):
    return httpx.AsyncClient(transport=httpx.MockTransport(provider))
