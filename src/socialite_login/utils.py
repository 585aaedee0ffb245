from typing import Mapping, Optional
from urllib import parse

from authlib.common.security import generate_token

STATE_LENGTH = 32


def build_query(params: Mapping) -> str:
    """Encode query parameters, skipping ``None`` values."""
    query = {}
    for key, value in params.items():
        if value is None:
            continue
        if isinstance(value, bool):
            value = "true" if value else "false"
        query[key] = value
    return parse.urlencode(query)


def build_url(domain: str, name: str, params: Optional[Mapping] = None) -> str:
    url = domain + name
    query = build_query(params or {})
    return f"{url}?{query}" if query else url


def generate_state(state: Optional[str] = None) -> str:
    if state is None:
        state = generate_token(STATE_LENGTH)
    return state
