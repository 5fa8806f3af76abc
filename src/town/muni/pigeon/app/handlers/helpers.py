import logging
from typing import Optional

from aiohttp import web

from town.muni.pigeon.app.auth import AuthContext, parse_bearer_token
from town.muni.pigeon.app.config import (
    AuthContextRequestKey,
    AuthenticatorAppKey,
    SettingsAppKey,
    XRPC_PREFIX,
)

logger = logging.getLogger(__name__)

FORBIDDEN_MESSAGE = "Could not validate authorization."


_DEFAULT_MESSAGES = {
    400: "Bad Request",
    403: FORBIDDEN_MESSAGE,
    404: "Not Found",
    405: "Method Not Allowed",
    500: "Internal Server Error",
}


def json_error(status: int, message: Optional[str] = None) -> web.Response:
    """Build an error response of the form {"status": ..., "error": ...}."""
    if message is None:
        message = _DEFAULT_MESSAGES.get(status, "Error")
    return web.json_response(status=status, data={"status": status, "error": message})


def xrpc_method(path: str) -> Optional[str]:
    """Return the XRPC method named by a request path, or None outside the XRPC prefix."""
    if not path.startswith(XRPC_PREFIX):
        return None
    return path[len(XRPC_PREFIX):].split("/", 1)[0]


async def auth_context_helper(request: web.Request, lxm: str) -> AuthContext:
    """
    Authenticate a gated request.

    The token must be a bearer credential naming this service as audience and `lxm` as its method. The
    resulting context is also stored on the request for downstream handlers.

    Raises:
        AuthenticationException: If the request cannot be authenticated
    """
    settings = request.app[SettingsAppKey]
    authenticator = request.app[AuthenticatorAppKey]

    token = parse_bearer_token(request.headers.get("Authorization"))
    auth_context = await authenticator.authenticate(token, settings.service_did, lxm)
    request[AuthContextRequestKey] = auth_context
    return auth_context


def get_auth_context(request: web.Request) -> AuthContext:
    """Return the context stored by the auth wall. Only valid inside gated handlers."""
    return request[AuthContextRequestKey]
