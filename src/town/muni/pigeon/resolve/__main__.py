from typing import List
import argparse
import aiohttp
import asyncio
import logging

from town.muni.pigeon.resolve.did import DidResolutionError
from town.muni.pigeon.resolve.resolver import IdResolver

logger = logging.getLogger(__name__)


async def realMain() -> None:
    parser = argparse.ArgumentParser(
        prog="pigeon-resolve", description="Resolve DID signing keys"
    )
    parser.add_argument("did", nargs="+", help="The DID(s) to resolve.")
    parser.add_argument(
        "--plc-hostname",
        default="plc.directory",
        help="The PLC hostname to use for resolving did-method-plc DIDs.",
    )

    args = vars(parser.parse_args())

    dids: List[str] = args.get("did", [])

    async with aiohttp.ClientSession() as session:
        resolver = IdResolver(session, args.get("plc_hostname", "plc.directory"))
        for did in dids:
            try:
                signing_key = await resolver.resolve_signing_key(did)
                print(f"{did} {signing_key}")
            except DidResolutionError:
                logger.exception("Exception resolving DID %s", did)


def main() -> None:
    logging.basicConfig()
    asyncio.run(realMain())


if __name__ == "__main__":
    main()
