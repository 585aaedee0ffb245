import logging
from typing import Mapping, Optional

import httpx

from ..base import IdentityIdMode, MiniProgramMixin, OAuth2Client
from ..errors import ProviderError
from ..utils import build_url

API_DOMAIN = "https://api.weixin.qq.com/"
OPEN_DOMAIN = "https://open.weixin.qq.com/"

QRCONNECT_EP = OPEN_DOMAIN + "connect/qrconnect"
MP_AUTHORIZE_EP = OPEN_DOMAIN + "connect/oauth2/authorize"
OAUTH2_TOKEN_EP = "sns/oauth2/access_token"
OAUTH2_REFRESH_TOKEN_EP = "sns/oauth2/refresh_token"
USER_INFO_EP = "sns/userinfo"
AUTH_EP = "sns/auth"
WXA_TOKEN_EP = "sns/jscode2session"

REDIRECT_FRAGMENT = "#wechat_redirect"

log = logging.getLogger(__name__)


def get_url(name: str, params: Optional[Mapping] = None) -> str:
    """Absolute URLs are kept, other names are resolved on the API domain."""
    if name.startswith("http"):
        return build_url("", name, params)
    return build_url(API_DOMAIN, name, params)


class WeChatOAuth2Client(MiniProgramMixin, OAuth2Client):
    ERROR_FIELDS = ("errcode", "errmsg")
    AUTH_RESP_FIELDS = {
        "access_token",
        "openid",
    }
    MINI_PROGRAM_SESSION_EP = get_url(WXA_TOKEN_EP)

    def __init__(
        self,
        appid: str,
        secret: str,
        lang: str = "zh_CN",
        identity_mode: IdentityIdMode = IdentityIdMode.PRIMARY_ID,
        **kwargs,
    ):
        super().__init__(appid, secret, **kwargs)
        self.lang = lang
        self.identity_mode = IdentityIdMode(identity_mode)

    def _authorization_params(self, callback_url, state, scope, default_scope):
        state, redirect_uri = self._prepare_authorization(callback_url, state)
        if scope is None:
            scope = default_scope if self.scope is None else self.scope
        return dict(
            appid=self.appid,
            redirect_uri=redirect_uri,
            response_type="code",
            scope=scope,
            state=state,
        )

    def build_authorization_url(
        self,
        callback_url: Optional[str] = None,
        state: Optional[str] = None,
        scope: Optional[str] = None,
    ) -> str:
        """URL of the QR code login page, for websites outside of WeChat."""
        params = self._authorization_params(callback_url, state, scope, "snsapi_login")
        if self.login_agent_url is None:
            return get_url(QRCONNECT_EP, params) + REDIRECT_FRAGMENT
        return self._agent_url(params)

    def build_wechat_authorization_url(
        self,
        callback_url: Optional[str] = None,
        state: Optional[str] = None,
        scope: Optional[str] = None,
    ) -> str:
        """URL of the authorization page opened inside the WeChat browser."""
        params = self._authorization_params(
            callback_url, state, scope, "snsapi_userinfo"
        )
        if self.login_agent_url is None:
            return get_url(MP_AUTHORIZE_EP, params) + REDIRECT_FRAGMENT
        params["isMp"] = 1
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
            get_url(OAUTH2_TOKEN_EP),
            dict(
                appid=self.appid,
                secret=self.secret,
                code=code,
                grant_type="authorization_code",
            ),
        )
        self._check(data)
        self._require(data, self.AUTH_RESP_FIELDS)
        self._remember_identity(data)
        self.session.refresh_token = data.get("refresh_token")
        self.session.access_token = data["access_token"]
        return self.session.access_token

    async def fetch_user_profile(self, access_token: Optional[str] = None) -> dict:
        data = await self._get(
            get_url(USER_INFO_EP),
            dict(
                access_token=self._access_token(access_token),
                openid=self.session.openid,
                lang=self.lang,
            ),
        )
        return self._check(data)

    async def refresh_access_token(self, refresh_token: str) -> bool:
        try:
            data = self._check(
                await self._get(
                    get_url(OAUTH2_REFRESH_TOKEN_EP),
                    dict(
                        appid=self.appid,
                        grant_type="refresh_token",
                        refresh_token=refresh_token,
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
        if data.get("openid"):
            self.session.openid = data["openid"]
        return True

    async def validate_access_token(self, access_token: Optional[str] = None) -> bool:
        try:
            data = await self._get(
                get_url(AUTH_EP),
                dict(
                    access_token=self._access_token(access_token),
                    openid=self.session.openid,
                ),
            )
        except (ProviderError, httpx.HTTPError) as e:
            log.info("%r: access token rejected: %r", self, e)
            return False
        return data.get("errcode") in (0, "0")
