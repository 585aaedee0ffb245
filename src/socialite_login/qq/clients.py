import logging
import re
from typing import Mapping, Optional

import httpx

from ..base import IdentityIdMode, MiniProgramMixin, OAuth2Client, select_identity_id
from ..errors import ProviderError
from ..utils import build_url

API_DOMAIN = "https://graph.qq.com/"
AUTHORIZE_EP = "oauth2.0/authorize"
TOKEN_EP = "oauth2.0/token"
OPENID_EP = "oauth2.0/me"
USER_INFO_EP = "user/get_user_info"
WXA_TOKEN_EP = "https://api.q.qq.com/sns/jscode2session"

# oauth2.0/me may still answer `callback( {...} );`
JSONP_RE = re.compile(r"^\s*callback\(\s*(\{.*?\})\s*\);?\s*$", re.S)

log = logging.getLogger(__name__)


class QQOAuth2Client(MiniProgramMixin, OAuth2Client):
    ERROR_FIELDS = ("code", "msg")
    USER_ERROR_FIELDS = ("ret", "msg")
    AUTH_RESP_FIELDS = {
        "access_token",
    }
    OPENID_RESP_FIELDS = {
        "openid",
    }
    MINI_PROGRAM_SESSION_EP = WXA_TOKEN_EP

    def __init__(
        self,
        appid: str,
        secret: str,
        display: Optional[str] = None,
        identity_mode: IdentityIdMode = IdentityIdMode.PRIMARY_ID,
        **kwargs,
    ):
        super().__init__(appid, secret, **kwargs)
        # "mobile" renders the authorization page for mobile browsers
        self.display = display
        self.identity_mode = IdentityIdMode(identity_mode)

    def build_authorization_url(
        self,
        callback_url: Optional[str] = None,
        state: Optional[str] = None,
        scope: Optional[str] = None,
    ) -> str:
        state, redirect_uri = self._prepare_authorization(callback_url, state)
        params = dict(
            response_type="code",
            client_id=self.appid,
            redirect_uri=redirect_uri,
            state=state,
            scope=self.scope if scope is None else scope,
            display=self.display,
        )
        if self.login_agent_url is None:
            return build_url(API_DOMAIN, AUTHORIZE_EP, params)
        return self._agent_url(params)

    async def exchange_code_for_token(
        self,
        expected_state: Optional[str] = None,
        code: Optional[str] = None,
        state: Optional[str] = None,
        context: Optional[Mapping[str, str]] = None,
    ) -> str:
        code, state = self._callback_params(expected_state, code, state, context)
        data = await self._get(
            API_DOMAIN + TOKEN_EP,
            dict(
                grant_type="authorization_code",
                client_id=self.appid,
                client_secret=self.secret,
                code=code,
                state=state,
                redirect_uri=self.session.redirect_uri or self.callback_url,
                fmt="json",
            ),
        )
        self._check(data)
        self._require(data, self.AUTH_RESP_FIELDS)
        self.session.refresh_token = data.get("refresh_token")
        self.session.access_token = data["access_token"]
        return self.session.access_token

    async def resolve_identity_id(self, access_token: Optional[str] = None) -> str:
        params = dict(access_token=self._access_token(access_token), fmt="json")
        if self.identity_mode != IdentityIdMode.PRIMARY_ID:
            params["unionid"] = 1

        data = self._check(await self._get(API_DOMAIN + OPENID_EP, params))
        self._require(data, self.OPENID_RESP_FIELDS)
        self.session.openid = data["openid"]
        self.session.unionid = data.get("unionid")
        self.session.identity_id = select_identity_id(
            self.identity_mode, self.session.openid, self.session.unionid
        )
        return self.session.identity_id

    async def fetch_user_profile(self, access_token: Optional[str] = None) -> dict:
        if self.session.openid is None:
            await self.resolve_identity_id(access_token)

        data = await self._get(
            API_DOMAIN + USER_INFO_EP,
            dict(
                access_token=self._access_token(access_token),
                oauth_consumer_key=self.appid,
                openid=self.session.openid,
            ),
        )
        code_field, msg_field = self.USER_ERROR_FIELDS
        if data.get(code_field) not in (None, 0, "0"):
            log.warning("%r: get_user_info error %s", self, data[code_field])
            raise ProviderError(data.get(msg_field), data[code_field])
        return data

    async def refresh_access_token(self, refresh_token: str) -> bool:
        try:
            data = self._check(
                await self._get(
                    API_DOMAIN + TOKEN_EP,
                    dict(
                        grant_type="refresh_token",
                        client_id=self.appid,
                        client_secret=self.secret,
                        refresh_token=refresh_token,
                        fmt="json",
                    ),
                )
            )
        except (ProviderError, httpx.HTTPError) as e:
            log.info("%r: refresh token failed: %r", self, e)
            return False
        if not data.get("access_token"):
            return False
        self.session.access_token = data["access_token"]
        self.session.refresh_token = data.get("refresh_token", refresh_token)
        return True

    async def validate_access_token(self, access_token: Optional[str] = None) -> bool:
        try:
            await self.resolve_identity_id(access_token)
        except (ProviderError, httpx.HTTPError) as e:
            log.info("%r: access token rejected: %r", self, e)
            return False
        return True

    def _check(self, data: dict) -> dict:
        # fmt=json errors of the token endpoint use the standard OAuth2 fields
        if "code" not in data and data.get("error") not in (None, 0, "0"):
            log.warning("%r: provider error %s", self, data["error"])
            raise ProviderError(data.get("error_description"), data["error"])
        return super()._check(data)

    def _loads(self, content: str):
        match = JSONP_RE.match(content)
        if match:
            content = match.group(1)
        return super()._loads(content)
