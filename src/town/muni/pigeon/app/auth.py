from dataclasses import dataclass
import logging
from typing import Optional

import sentry_sdk

from town.muni.pigeon.app.metrics import MetricsClient, NoOpMetricsClient
from town.muni.pigeon.atproto.service_auth import (
    ServiceJwtError,
    ServiceJwtPayload,
    SigningKeyResolver,
    verify_service_jwt,
)
from town.muni.pigeon.resolve.did import DidResolutionError

logger = logging.getLogger(__name__)

BEARER_PREFIX = "Bearer "


@dataclass(repr=False, eq=False)
class AuthContext:
    """
    The authenticated caller of a gated request.

    Attributes:
        did: The DID of the token issuer. This is the only identity owner operations may act on.
        lxm: The XRPC method the token was scoped to
        payload: The validated token claims
    """

    did: str
    lxm: str
    payload: ServiceJwtPayload


class AuthenticationException(Exception):
    """
    Exception raised for authentication failures.

    Every instance is reported to the caller as the same 403 response. The message and reason only reach
    the server logs and metrics.
    """

    def __init__(self, message: str, reason: str) -> None:
        super().__init__(message)
        self.reason = reason

    @staticmethod
    def authorization_missing() -> "AuthenticationException":
        """The request has no Authorization header."""
        return AuthenticationException(
            "error-auth-1000 Authorization header missing", "authorization_missing"
        )

    @staticmethod
    def bearer_missing() -> "AuthenticationException":
        """The Authorization header does not carry a bearer token."""
        return AuthenticationException(
            "error-auth-1001 Bearer token required", "bearer_missing"
        )

    @staticmethod
    def jwt_invalid(cause: Exception) -> "AuthenticationException":
        """The token failed structural, claim or signature validation."""
        return AuthenticationException(
            f"error-auth-1002 Could not validate JWT: {cause}", "jwt_invalid"
        )

    @staticmethod
    def resolution_failed(cause: Exception) -> "AuthenticationException":
        """The issuer's signing key could not be resolved."""
        return AuthenticationException(
            f"error-auth-1003 Could not resolve issuer signing key: {cause}",
            "resolution_failed",
        )

    @staticmethod
    def unexpected(cause: Exception) -> "AuthenticationException":
        """An unexpected error occurred during authentication."""
        return AuthenticationException(
            f"error-auth-1999 Unexpected authentication error: {type(cause).__name__}",
            "unexpected",
        )


def parse_bearer_token(authorization: Optional[str]) -> str:
    """
    Extract the token from an Authorization header value.

    Raises:
        AuthenticationException: If the header is missing or is not a non-empty bearer credential
    """
    if not authorization:
        raise AuthenticationException.authorization_missing()
    if not authorization.startswith(BEARER_PREFIX):
        raise AuthenticationException.bearer_missing()
    token = authorization[len(BEARER_PREFIX):].strip()
    if len(token) == 0:
        raise AuthenticationException.bearer_missing()
    return token


class Authenticator:
    """
    Validates service-auth bearer tokens.

    Cryptographic and claim validation is delegated to verify_service_jwt. The authenticator supplies the
    key source and turns every failure into an AuthenticationException, logging resolution failures
    separately from bad tokens.
    """

    def __init__(
        self,
        resolver: SigningKeyResolver,
        metrics_client: Optional[MetricsClient] = None,
    ) -> None:
        self.resolver = resolver
        self.metrics_client = metrics_client or NoOpMetricsClient()

    async def resolve_signing_key(self, did: str, force_refresh: bool) -> str:
        return await self.resolver.resolve_signing_key(did, force_refresh)

    async def authenticate(
        self, token: str, audience: str, lxm: str
    ) -> AuthContext:
        """
        Validate a token for the given audience and XRPC method.

        Args:
            token: Serialized service-auth JWT
            audience: This service's DID
            lxm: The XRPC method being invoked

        Returns:
            AuthContext for the token issuer

        Raises:
            AuthenticationException: For any failure
        """
        try:
            payload = await verify_service_jwt(
                token, audience, lxm, self.resolve_signing_key
            )
        except DidResolutionError as e:
            logger.warning("Signing key resolution failed for %s: %s", lxm, e)
            raise AuthenticationException.resolution_failed(e) from e
        except ServiceJwtError as e:
            logger.warning("Rejected service-auth JWT for %s: %s", lxm, e)
            raise AuthenticationException.jwt_invalid(e) from e
        except Exception as e:
            logger.exception("Unexpected error validating service-auth JWT")
            sentry_sdk.capture_exception(e)
            raise AuthenticationException.unexpected(e) from e

        return AuthContext(did=payload.iss, lxm=lxm, payload=payload)
