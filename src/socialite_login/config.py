import importlib
import json
import logging
from importlib.metadata import entry_points

import httpx
from starlette.config import Config

PROVIDERS_GROUP = "socialite_login.providers"

config = Config()
log = logging.getLogger(__name__)

HTTP_TIMEOUT = config("SOCIALITE_HTTP_TIMEOUT", cast=float, default=10.0)


class ClientFactory:
    """Creates one adapter per login flow.

    Adapters keep per-flow session state, so they are never shared between
    requests. All adapters of one app share a single HTTP connection pool.
    """

    def __init__(self, client_cls, appid: str, secret: str, timeout: float, **kwargs):
        self.client_cls = client_cls
        self.appid = appid
        self.secret = secret
        self.kwargs = kwargs
        self.client = httpx.AsyncClient(timeout=timeout)

    def __call__(self):
        return self.client_cls(self.appid, self.secret, client=self.client, **self.kwargs)

    def __repr__(self) -> str:
        return f"ClientFactory({self.client_cls.__name__}, appid={self.appid!r})"

    async def close(self):
        await self.client.aclose()


def load_client_class(name: str):
    """Resolve a provider entry point name or a dotted ``module.ClassName``."""
    for ep in entry_points(group=PROVIDERS_GROUP):
        if ep.name == name:
            return ep.load()
    if "." not in name:
        raise LookupError(f"Provider not found: {name}")
    module, cls_name = name.rsplit(".", 1)
    return getattr(importlib.import_module(module), cls_name)


def get_clients(value: str, timeout: float = HTTP_TIMEOUT):
    """A list of OAuth2 client factories, the value can be a JSON string like this:
    [
        {
            "AppID": "...",
            "AppSecret": "...",
            "Type": "wechat",
            "CallbackURL": "https://example.com/login/wechat/callback",
            "Scope": "snsapi_login",
            "LoginAgentURL": null,
            "Options": {"identity_mode": 3}
        }
    ]
    """
    if not value:
        return {}
    clients = json.loads(value)
    client_mapping = {}
    for app_id, client_conf in {client.get("AppID"): client for client in clients}.items():
        if not (app_id and client_conf.get("AppSecret")):
            log.critical("OAuth2 client has not been configured correctly: %s", app_id)
            continue
        try:
            client_cls = load_client_class(client_conf["Type"])
        except (KeyError, LookupError, ImportError, AttributeError):
            log.critical(
                "Unknown OAuth2 client type for %s: %s", app_id, client_conf.get("Type")
            )
            continue
        client_mapping[app_id] = ClientFactory(
            client_cls,
            app_id,
            client_conf["AppSecret"],
            timeout,
            callback_url=client_conf.get("CallbackURL"),
            scope=client_conf.get("Scope"),
            login_agent_url=client_conf.get("LoginAgentURL"),
            **client_conf.get("Options", {}),
        )
    return client_mapping


async def close_clients(clients: dict):
    for app_id, client in clients.items():
        log.info("Closing OAuth2 client connection: %s", app_id)
        await client.close()
        log.info("Closed OAuth2 client connection: %s", app_id)


CLIENTS = config("SOCIALITE_CLIENTS", cast=get_clients, default="")
