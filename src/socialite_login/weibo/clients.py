import logging
from typing import Mapping, Optional

import httpx

from ..base import OAuth2Client
from ..errors import ProviderError
from ..utils import build_url

API_DOMAIN = "https://api.weibo.com/"
# authorization pages with display=mobile live on this domain
API_MOBILE_DOMAIN = "https://open.weibo.cn/"

AUTHORIZE_EP = "oauth2/authorize"
TOKEN_EP = "oauth2/access_token"
TOKEN_INFO_EP = "oauth2/get_token_info"
USER_INFO_EP = "2/users/show.json"

log = logging.getLogger(__name__)


class WeiboOAuth2Client(OAuth2Client):
    ERROR_FIELDS = ("error_code", "error")
    AUTH_RESP_FIELDS = {
        "access_token",
        "uid",
    }

    def __init__(
        self,
        appid: str,
        secret: str,
        display: Optional[str] = None,
        forcelogin: bool = False,
        language: Optional[str] = None,
        screen_name: Optional[str] = None,
        **kwargs,
    ):
        super().__init__(appid, secret, **kwargs)
        self.display = display
        self.forcelogin = forcelogin
        self.language = language
        self.screen_name = screen_name

    def build_authorization_url(
        self,
        callback_url: Optional[str] = None,
        state: Optional[str] = None,
        scope: Optional[str] = None,
    ) -> str:
        state, redirect_uri = self._prepare_authorization(callback_url, state)
        params = dict(
            client_id=self.appid,
            redirect_uri=redirect_uri,
            scope=self.scope if scope is None else scope,
            state=state,
            display=self.display,
            forcelogin=self.forcelogin,
            language=self.language,
        )
        if self.login_agent_url is not None:
            return self._agent_url(params)
        if self.display == "mobile":
            return build_url(API_MOBILE_DOMAIN, AUTHORIZE_EP, params)
        return build_url(API_DOMAIN, AUTHORIZE_EP, params)

    async def exchange_code_for_token(
        self,
        expected_state: Optional[str] = None,
        code: Optional[str] = None,
        state: Optional[str] = None,
        context: Optional[Mapping[str, str]] = None,
    ) -> str:
        code, state = self._callback_params(expected_state, code, state, context)
        data = await self._post(
            API_DOMAIN + TOKEN_EP,
            dict(
                client_id=self.appid,
                client_secret=self.secret,
                grant_type="authorization_code",
                code=code,
                redirect_uri=self.session.redirect_uri or self.callback_url,
            ),
        )
        self._check(data)
        self._require(data, self.AUTH_RESP_FIELDS)
        # Weibo ids are numbers, keep them as strings like the other providers
        self.session.openid = str(data["uid"])
        self.session.identity_id = self.session.openid
        self.session.access_token = data["access_token"]
        return self.session.access_token

    async def fetch_user_profile(self, access_token: Optional[str] = None) -> dict:
        data = await self._get(
            API_DOMAIN + USER_INFO_EP,
            dict(
                access_token=self._access_token(access_token),
                uid=self.session.openid,
                screen_name=self.screen_name,
            ),
        )
        return self._check(data)

    async def refresh_access_token(self, refresh_token: str) -> bool:
        """Weibo has no refresh grant, always ``False``."""
        return False

    async def validate_access_token(self, access_token: Optional[str] = None) -> bool:
        try:
            data = self._check(
                await self._post(
                    API_DOMAIN + TOKEN_INFO_EP,
                    dict(access_token=self._access_token(access_token)),
                )
            )
        except (ProviderError, httpx.HTTPError) as e:
            log.info("%r: access token rejected: %r", self, e)
            return False
        try:
            return int(data.get("expire_in", 0)) > 0
        except (TypeError, ValueError):
            return False

    def _is_error(self, data: dict) -> bool:
        return self.ERROR_FIELDS[0] in data
