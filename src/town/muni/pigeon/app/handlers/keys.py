import logging
from urllib.parse import unquote

from aiohttp import web

from town.muni.pigeon.app.config import KeypairStoreAppKey
from town.muni.pigeon.app.handlers.helpers import get_auth_context, json_error
from town.muni.pigeon.keys.encoding import encode_public_tag, encode_secret
from town.muni.pigeon.resolve.did import InvalidDidError, ensure_supported_did

logger = logging.getLogger(__name__)


async def handle_public_key(request: web.Request) -> web.Response:
    """
    Return the public key tag for any did:plc or did:web DID.

    A keypair is created for the DID if it does not have one yet. No proof of ownership is required to
    trigger creation; only the owner can ever read the secret half.
    """
    did = request.query.get("did")
    if not did:
        return json_error(400, "DID query parameter required")
    did = unquote(did)

    try:
        ensure_supported_did(did)
    except InvalidDidError as e:
        return json_error(400, str(e))

    keypair = await request.app[KeypairStoreAppKey].get_or_create(did)
    return web.json_response({"publicKey": encode_public_tag(keypair.public_key)})


async def handle_own_keypair(request: web.Request) -> web.Response:
    """
    Return both halves of the caller's own keypair.

    The DID comes exclusively from the authenticated token issuer. Query parameters are ignored.
    """
    auth_context = get_auth_context(request)
    keypair = await request.app[KeypairStoreAppKey].get_or_create(auth_context.did)
    return web.json_response(
        {
            "publicKey": encode_public_tag(keypair.public_key),
            "secretKey": encode_secret(keypair.secret_key),
        }
    )
