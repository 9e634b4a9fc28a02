"""Federated OIDC/PKCE/SRP login for the tenant's platform token.

The exchange runs these steps strictly in order, sharing one cookie jar:

    DiscoverOIDC -> GeneratePKCE -> InitiateAuthorization -> FetchIdPConfig
    -> FederatedLogin -> ExchangeForAuthCode -> ExchangeCodeViaRedirect
    -> ExchangeForAccessToken

The identity provider correlates steps through session cookies set during
InitiateAuthorization, so every request goes through the same
httpx.AsyncClient. Redirects are never followed automatically; the steps that
need a redirect read its Location themselves.

Any failure aborts the whole exchange with one generic AuthenticationError.
The failing step and its cause are logged and never attached to the raised
error, since the payloads of both identity systems can carry sensitive detail.
No step is retried here; callers retry by running the whole exchange again.

Reference: RFC 7636 (PKCE), OpenID Connect Discovery 1.0
"""

import asyncio
import base64
import hashlib
import logging
import secrets
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import httpx

from .credentials import Credentials
from .errors import AuthenticationError
from .metrics import auth_exchanges_total
from .models import TokenGrant

logger = logging.getLogger("appgen.auth")

__all__ = [
    "AuthStep",
    "FederatedAuthenticator",
    "FederatedTokens",
    "PkcePair",
    "cognito_srp_login",
    "generate_pkce",
]


class AuthStep(str, Enum):
    """Steps of the federated login, in execution order."""

    DISCOVER_OIDC = "DiscoverOIDC"
    GENERATE_PKCE = "GeneratePKCE"
    INITIATE_AUTHORIZATION = "InitiateAuthorization"
    FETCH_IDP_CONFIG = "FetchIdPConfig"
    FEDERATED_LOGIN = "FederatedLogin"
    EXCHANGE_FOR_AUTH_CODE = "ExchangeForAuthCode"
    EXCHANGE_CODE_VIA_REDIRECT = "ExchangeCodeViaRedirect"
    EXCHANGE_FOR_ACCESS_TOKEN = "ExchangeForAccessToken"
    DONE = "Done"


class _StepFailed(Exception):
    """Internal: a step could not produce its output."""

    pass


@dataclass(frozen=True)
class PkcePair:
    """PKCE verifier and its S256 challenge."""

    verifier: str = field(repr=False)
    challenge: str


@dataclass(frozen=True)
class FederatedTokens:
    """Tokens of the federated identity (not yet the platform's token)."""

    id_token: str = field(repr=False)
    access_token: str = field(repr=False)
    refresh_token: str = field(repr=False)


@dataclass(frozen=True)
class _OidcEndpoints:
    authorization_endpoint: str
    token_endpoint: str


@dataclass(frozen=True)
class _AuthorizationContext:
    state: str = field(repr=False)
    kc_uri: str
    client_pool_id: str


@dataclass(frozen=True)
class _IdentityPoolConfig:
    pool_id: str
    client_id: str


SrpLogin = Callable[[str, str, str, str], FederatedTokens]


def generate_pkce() -> PkcePair:
    """Generate a PKCE verifier and S256 challenge (RFC 7636).

    The verifier is 86 characters from the URL-safe alphabet, drawn from
    ``secrets``; the challenge is base64url(SHA256(verifier)) without padding.
    """
    verifier = secrets.token_urlsafe(64)
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    challenge = base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")
    return PkcePair(verifier=verifier, challenge=challenge)


def cognito_srp_login(
    username: str, password: str, pool_id: str, client_id: str
) -> FederatedTokens:
    """Run the SRP challenge-response against a Cognito user pool.

    Blocking (boto3); call it from a worker thread. The pool region is the
    prefix of the pool id (``us-east-1_AbCd`` -> ``us-east-1``).
    """
    from pycognito.aws_srp import AWSSRP

    region = pool_id.split("_", 1)[0]
    srp = AWSSRP(
        username=username,
        password=password,
        pool_id=pool_id,
        client_id=client_id,
        pool_region=region,
    )
    result = srp.authenticate_user()["AuthenticationResult"]
    return FederatedTokens(
        id_token=result["IdToken"],
        access_token=result["AccessToken"],
        refresh_token=result["RefreshToken"],
    )


def _query_param(url: httpx.URL, name: str) -> str | None:
    return url.params.get(name) or None


class FederatedAuthenticator:
    """Executes the federated login for one set of credentials.

    Attributes:
        credentials: Tenant hostname and account credentials
        timeout: Per-request timeout in seconds
        default_expires_in: Token lifetime used when the token endpoint omits it

    Example:
        >>> authenticator = FederatedAuthenticator(credentials)
        >>> grant = await authenticator.authenticate()
        >>> grant.expires_in
        3600
    """

    CLIENT_ID = "unified_experience"
    IDP_HINT = "cognito"
    SCOPE = "openid email profile"
    MAX_AUTHORIZE_HOPS = 10

    def __init__(
        self,
        credentials: Credentials,
        timeout: float = 30.0,
        default_expires_in: int = 3600,
        srp_login: SrpLogin | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the authenticator.

        Args:
            credentials: Tenant hostname and account credentials
            timeout: Per-request timeout in seconds (default: 30)
            default_expires_in: Fallback token lifetime in seconds (default: 3600)
            srp_login: Blocking SRP login function; defaults to cognito_srp_login
            transport: Optional httpx transport for the session client
        """
        self.credentials = credentials
        self.timeout = timeout
        self.default_expires_in = default_expires_in
        self._srp_login = srp_login or cognito_srp_login
        self._transport = transport

        host = credentials.hostname
        self.oidc_config_url = f"https://{host}/identity/.well-known/openid-configuration"
        self.redirect_url = f"https://{host}/authentication/redirect"
        self.tenant_config_url = f"https://{host}/authentication/rest/api/v1/tenant-config"
        self.store_token_url = f"https://{host}/identityapi/v1alpha1/oidc/store-token"

    def _new_session(self) -> httpx.AsyncClient:
        """Create the cookie-carrying client shared by every step."""
        return httpx.AsyncClient(
            timeout=self.timeout,
            follow_redirects=False,
            transport=self._transport,
        )

    async def authenticate(self) -> TokenGrant:
        """Run the full exchange and return the platform access token.

        Raises:
            AuthenticationError: If any step fails (generic message only)
        """
        step = AuthStep.DISCOVER_OIDC
        try:
            async with self._new_session() as session:
                oidc = await self._discover_oidc(session)

                step = AuthStep.GENERATE_PKCE
                logger.debug("auth_step", extra={"step": step.value})
                pkce = generate_pkce()

                step = AuthStep.INITIATE_AUTHORIZATION
                context = await self._initiate_authorization(session, oidc, pkce)

                step = AuthStep.FETCH_IDP_CONFIG
                pool = await self._fetch_idp_config(session)

                step = AuthStep.FEDERATED_LOGIN
                federated = await self._federated_login(pool)

                step = AuthStep.EXCHANGE_FOR_AUTH_CODE
                intermediate_code = await self._exchange_for_auth_code(
                    session, context, federated
                )

                step = AuthStep.EXCHANGE_CODE_VIA_REDIRECT
                final_code = await self._exchange_code_via_redirect(
                    session, context, intermediate_code
                )

                step = AuthStep.EXCHANGE_FOR_ACCESS_TOKEN
                grant = await self._exchange_for_access_token(
                    session, oidc, pkce, final_code
                )
        except Exception as e:
            auth_exchanges_total.labels(status="failed", step=step.value).inc()
            logger.error(
                "authentication_failed",
                extra={
                    "step": step.value,
                    "error_type": type(e).__name__,
                    "cause": str(e),
                    "hostname": self.credentials.hostname,
                },
            )
            raise AuthenticationError() from None

        auth_exchanges_total.labels(status="success", step=AuthStep.DONE.value).inc()
        logger.debug(
            "authentication_succeeded",
            extra={"expires_in_seconds": grant.expires_in},
        )
        return grant

    # --- Steps ---

    def _json_or_fail(self, response: httpx.Response, step: AuthStep) -> dict[str, Any]:
        if response.status_code != 200:
            raise _StepFailed(f"{step.value} returned HTTP {response.status_code}")
        try:
            data = response.json()
        except ValueError as e:
            raise _StepFailed(f"{step.value} returned a non-JSON body") from e
        if not isinstance(data, dict):
            raise _StepFailed(f"{step.value} returned an unexpected payload")
        return data

    async def _discover_oidc(self, session: httpx.AsyncClient) -> _OidcEndpoints:
        """Fetch the OIDC metadata document."""
        logger.debug("auth_step", extra={"step": AuthStep.DISCOVER_OIDC.value})
        response = await session.get(self.oidc_config_url)
        data = self._json_or_fail(response, AuthStep.DISCOVER_OIDC)
        authorization_endpoint = data.get("authorization_endpoint")
        token_endpoint = data.get("token_endpoint")
        if not authorization_endpoint or not token_endpoint:
            raise _StepFailed("OIDC metadata lacks authorization or token endpoint")
        return _OidcEndpoints(authorization_endpoint, token_endpoint)

    async def _initiate_authorization(
        self,
        session: httpx.AsyncClient,
        oidc: _OidcEndpoints,
        pkce: PkcePair,
    ) -> _AuthorizationContext:
        """Start the authorization flow and read state, kcUri and pool client id.

        Walks the redirect chain by hand (bounded) and inspects each Location
        until one carries all three parameters.
        """
        logger.debug("auth_step", extra={"step": AuthStep.INITIATE_AUTHORIZATION.value})
        params = {
            "response_type": "code",
            "client_id": self.CLIENT_ID,
            "redirect_uri": self.redirect_url,
            "kc_idp_hint": self.IDP_HINT,
            "scope": self.SCOPE,
            "code_challenge": pkce.challenge,
            "code_challenge_method": "S256",
        }
        response = await session.get(oidc.authorization_endpoint, params=params)

        for _ in range(self.MAX_AUTHORIZE_HOPS):
            if response.has_redirect_location:
                url = response.url.join(response.headers["location"])
            else:
                url = response.url

            state = _query_param(url, "state")
            kc_uri = _query_param(url, "redirect_uri")
            client_pool_id = _query_param(url, "client_id")
            if state and kc_uri and client_pool_id:
                return _AuthorizationContext(state, kc_uri, client_pool_id)

            if not response.has_redirect_location:
                break
            response = await session.get(url)

        raise _StepFailed("Failed to retrieve state, kcUri, or clientPoolId from auth page")

    async def _fetch_idp_config(self, session: httpx.AsyncClient) -> _IdentityPoolConfig:
        """Read the federated identity pool settings from the tenant."""
        logger.debug("auth_step", extra={"step": AuthStep.FETCH_IDP_CONFIG.value})
        response = await session.get(self.tenant_config_url)
        data = self._json_or_fail(response, AuthStep.FETCH_IDP_CONFIG)
        cognito = data.get("cognitoConfig") or {}
        pool_id = cognito.get("poolId")
        client_id = cognito.get("amplifyClientId")
        if not pool_id or not client_id:
            raise _StepFailed("Tenant config lacks poolId or amplifyClientId")
        return _IdentityPoolConfig(pool_id, client_id)

    async def _federated_login(self, pool: _IdentityPoolConfig) -> FederatedTokens:
        """SRP login against the identity pool, off the event loop."""
        logger.debug(
            "auth_step",
            extra={"step": AuthStep.FEDERATED_LOGIN.value, "pool_id": pool.pool_id},
        )
        return await asyncio.to_thread(
            self._srp_login,
            self.credentials.username,
            self.credentials.password,
            pool.pool_id,
            pool.client_id,
        )

    async def _exchange_for_auth_code(
        self,
        session: httpx.AsyncClient,
        context: _AuthorizationContext,
        federated: FederatedTokens,
    ) -> str:
        """Trade the federated tokens for an intermediate authorization code."""
        logger.debug("auth_step", extra={"step": AuthStep.EXCHANGE_FOR_AUTH_CODE.value})
        response = await session.post(
            self.store_token_url,
            json={
                "ClientId": context.client_pool_id,
                "IdToken": federated.id_token,
                "AccessToken": federated.access_token,
                "RefreshToken": federated.refresh_token,
            },
        )
        data = self._json_or_fail(response, AuthStep.EXCHANGE_FOR_AUTH_CODE)
        code = data.get("authCode")
        if not code:
            raise _StepFailed("store-token response lacks authCode")
        return code

    async def _exchange_code_via_redirect(
        self,
        session: httpx.AsyncClient,
        context: _AuthorizationContext,
        intermediate_code: str,
    ) -> str:
        """Hand the intermediate code to the broker and read the final code."""
        logger.debug("auth_step", extra={"step": AuthStep.EXCHANGE_CODE_VIA_REDIRECT.value})
        response = await session.get(
            context.kc_uri,
            params={"code": intermediate_code, "state": context.state},
        )
        if not 200 <= response.status_code < 400:
            raise _StepFailed(f"Broker returned HTTP {response.status_code}")
        location = response.headers.get("location")
        if not location:
            raise _StepFailed("Broker response has no redirect location")
        final_url = httpx.URL(self.redirect_url).join(location)
        code = _query_param(final_url, "code")
        if not code:
            raise _StepFailed("Failed to retrieve final authorization code from redirect")
        return code

    async def _exchange_for_access_token(
        self,
        session: httpx.AsyncClient,
        oidc: _OidcEndpoints,
        pkce: PkcePair,
        code: str,
    ) -> TokenGrant:
        """Redeem the final code at the token endpoint."""
        logger.debug("auth_step", extra={"step": AuthStep.EXCHANGE_FOR_ACCESS_TOKEN.value})
        response = await session.post(
            oidc.token_endpoint,
            data={
                "grant_type": "authorization_code",
                "code": code,
                "code_verifier": pkce.verifier,
                "redirect_uri": self.redirect_url,
                "client_id": self.CLIENT_ID,
            },
        )
        data = self._json_or_fail(response, AuthStep.EXCHANGE_FOR_ACCESS_TOKEN)
        access_token = data.get("access_token")
        if not access_token:
            raise _StepFailed("Token response lacks access_token")
        try:
            expires_in = int(data.get("expires_in") or self.default_expires_in)
        except (TypeError, ValueError):
            expires_in = self.default_expires_in
        return TokenGrant(access_token=access_token, expires_in=expires_in)
