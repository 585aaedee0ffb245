from typing import Optional, Union

import httpx

# Network level failures are raised by httpx unchanged.
TransportError = httpx.HTTPError


class ProviderError(Exception):
    def __init__(
        self, message: Optional[str] = None, code: Union[int, str, None] = None
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code

    def __repr__(self) -> str:
        return f"{type(self).__name__}(message={self.message!r}, code={self.code!r})"


class StateMismatchError(ProviderError):
    def __init__(self, expected: str, received: str) -> None:
        super().__init__("State mismatched")
        self.expected = expected
        self.received = received


class InvalidArgument(ValueError):
    pass
