from aiohttp import web

from town.muni.pigeon.app.config import SettingsAppKey

DID_CONTEXT = "https://www.w3.org/ns/did/v1"
SERVICE_ID = "#pigeon_keyserver"
SERVICE_TYPE = "PigeonKeyserver"


def service_endpoint(request: web.Request) -> str:
    """The base URL the request was addressed to, with the path reset to /."""
    return str(request.url.origin().with_path("/"))


async def handle_did_document(request: web.Request) -> web.Response:
    """
    Serve this service's DID document.

    The document is derived from configuration and the inbound request URL on every call. Nothing is
    persisted.
    """
    settings = request.app[SettingsAppKey]
    return web.json_response(
        {
            "@context": [DID_CONTEXT],
            "id": settings.service_did,
            "service": [
                {
                    "id": SERVICE_ID,
                    "type": SERVICE_TYPE,
                    "serviceEndpoint": service_endpoint(request),
                }
            ],
        }
    )
