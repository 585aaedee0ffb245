import abc
import enum
import json
import logging
from dataclasses import dataclass, field
from typing import Mapping, Optional

import httpx

from .crypto import decrypt_data
from .errors import InvalidArgument, ProviderError, StateMismatchError
from .utils import build_query, generate_state

DEFAULT_TIMEOUT = 10.0

log = logging.getLogger(__name__)


class IdentityIdMode(enum.IntEnum):
    """Which provider id is used as the canonical identity id."""

    PRIMARY_ID = 1
    UNIFIED_ID = 2
    # unified id if the provider returned one, otherwise the primary id
    UNIFIED_ID_PREFERRED = 3


def select_identity_id(
    mode: IdentityIdMode, openid: Optional[str], unionid: Optional[str]
) -> Optional[str]:
    if mode == IdentityIdMode.UNIFIED_ID:
        return unionid
    if mode == IdentityIdMode.UNIFIED_ID_PREFERRED:
        return unionid or openid
    return openid


@dataclass
class LoginSession:
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    openid: Optional[str] = None
    unionid: Optional[str] = None
    identity_id: Optional[str] = None
    state: Optional[str] = None
    redirect_uri: Optional[str] = None
    result: dict = field(default_factory=dict)

    def reset(self, keep_authorization: bool = False):
        """Start a new login attempt.

        With ``keep_authorization`` the state and redirect URI of the
        authorization URL survive, the code exchange still needs them.
        """
        state, redirect_uri = self.state, self.redirect_uri
        self.__init__()
        if keep_authorization:
            self.state, self.redirect_uri = state, redirect_uri


class OAuth2Client(abc.ABC):
    """Shared contract of the provider adapters.

    An instance holds the state of one login flow in ``session``, so it must
    not be shared between concurrent flows.
    """

    # (code field, message field) of the provider's error body
    ERROR_FIELDS = ("errcode", "errmsg")

    def __init__(
        self,
        appid: str,
        secret: str,
        callback_url: Optional[str] = None,
        scope: Optional[str] = None,
        login_agent_url: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        self.appid = appid
        self.secret = secret
        self.callback_url = callback_url
        self.scope = scope
        self.login_agent_url = login_agent_url
        # a client passed in is shared, its owner closes it
        self.owns_client = client is None
        self.client = client or httpx.AsyncClient(timeout=timeout)
        self.session = LoginSession()

    def __repr__(self) -> str:
        return f"{type(self).__name__}(appid={self.appid!r})"

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        await self.close()

    async def close(self):
        if self.owns_client:
            await self.client.aclose()

    @abc.abstractmethod
    def build_authorization_url(
        self,
        callback_url: Optional[str] = None,
        state: Optional[str] = None,
        scope: Optional[str] = None,
    ) -> str:
        pass

    @abc.abstractmethod
    async def exchange_code_for_token(
        self,
        expected_state: Optional[str] = None,
        code: Optional[str] = None,
        state: Optional[str] = None,
        context: Optional[Mapping[str, str]] = None,
    ) -> str:
        pass

    @abc.abstractmethod
    async def fetch_user_profile(self, access_token: Optional[str] = None) -> dict:
        pass

    @abc.abstractmethod
    async def refresh_access_token(self, refresh_token: str) -> bool:
        """Renew the access token. Never raises, failures return ``False``."""

    @abc.abstractmethod
    async def validate_access_token(self, access_token: Optional[str] = None) -> bool:
        """Ask the provider about the token. Failures return ``False``."""

    async def resolve_identity_id(self, access_token: Optional[str] = None) -> str:
        if not self.session.identity_id:
            raise ProviderError("No identity id, exchange a code first")
        return self.session.identity_id

    async def exchange_mini_program_session(self, js_code: str) -> str:
        raise ProviderError("Mini-program login is not supported")

    def _prepare_authorization(self, callback_url, state):
        self.session.reset()
        self.session.state = generate_state(state)
        self.session.redirect_uri = (
            self.callback_url if callback_url is None else callback_url
        )
        return self.session.state, self.session.redirect_uri

    def _agent_url(self, params: Mapping) -> str:
        return f"{self.login_agent_url}?{build_query(params)}"

    def _callback_params(self, expected_state, code, state, context):
        context = context or {}
        if code is None:
            code = context.get("code", "")
        if state is None:
            state = context.get("state", "")
        if expected_state is not None and state != expected_state:
            log.warning("%r: callback state mismatched", self)
            raise StateMismatchError(expected_state, state)
        self.session.reset(keep_authorization=True)
        return code, state

    def _access_token(self, access_token: Optional[str]) -> str:
        access_token = access_token or self.session.access_token
        if not access_token:
            raise ProviderError("Missing access token")
        return access_token

    def _is_error(self, data: dict) -> bool:
        return data.get(self.ERROR_FIELDS[0]) not in (None, 0, "0")

    def _check(self, data: dict) -> dict:
        if self._is_error(data):
            code_field, msg_field = self.ERROR_FIELDS
            log.warning(
                "%r: provider error %s: %s", self, data[code_field], data.get(msg_field)
            )
            raise ProviderError(data.get(msg_field), data[code_field])
        return data

    def _require(self, data: dict, fields: set) -> dict:
        if not fields <= set(data.keys()):
            log.warning("%r: unexpected response, missing %s", self, fields - set(data))
            raise ProviderError("Unexpected response")
        return data

    def _loads(self, content: str):
        return json.loads(content)

    def _parse(self, response: httpx.Response) -> dict:
        # Error bodies come with 4xx statuses as well, so read the body first.
        try:
            data = self._loads(response.text)
        except ValueError:
            response.raise_for_status()
            raise ProviderError("Unexpected response", response.status_code)
        if not isinstance(data, dict):
            raise ProviderError("Unexpected response", response.status_code)
        self.session.result = data
        return data

    async def _get(self, url: str, params: Mapping) -> dict:
        params = {k: v for k, v in params.items() if v is not None}
        response = await self.client.get(url, params=params)
        return self._parse(response)

    async def _post(self, url: str, data: Mapping) -> dict:
        data = {k: v for k, v in data.items() if v is not None}
        response = await self.client.post(url, data=data)
        return self._parse(response)


class MiniProgramMixin:
    """Login credential exchange and payload decryption of mini-programs."""

    MINI_PROGRAM_SESSION_EP: str
    WXA_AUTH_RESP_FIELDS = {
        "openid",
        "session_key",
    }

    async def exchange_mini_program_session(self, js_code: str) -> str:
        self.session.reset()
        data = await self._get(
            self.MINI_PROGRAM_SESSION_EP,
            dict(
                appid=self.appid,
                secret=self.secret,
                js_code=js_code,
                grant_type="authorization_code",
            ),
        )
        self._check_mini_program(data)
        self._require(data, self.WXA_AUTH_RESP_FIELDS)
        self._remember_identity(data)
        return data["session_key"]

    def _check_mini_program(self, data: dict) -> dict:
        if data.get("errcode") not in (None, 0, "0"):
            log.warning(
                "%r: mini-program error %s: %s", self, data["errcode"], data.get("errmsg")
            )
            raise ProviderError(data.get("errmsg"), data["errcode"])
        return data

    def _remember_identity(self, data: dict):
        self.session.openid = data.get("openid")
        self.session.unionid = data.get("unionid")
        self.session.identity_id = select_identity_id(
            self.identity_mode, self.session.openid, self.session.unionid
        )

    def decrypt_data(self, encrypted_data: str, iv: str, session_key: str) -> dict:
        data = decrypt_data(encrypted_data, iv, session_key)
        watermark = data.get("watermark")
        if (
            isinstance(watermark, dict)
            and "appid" in watermark
            and watermark["appid"] != self.appid
        ):
            raise InvalidArgument("Bad watermark AppID")
        return data
