"""Service-account bearer tokens for the spreadsheet API.

Builds an RS256-signed JWT assertion for the service identity and exchanges
it at the token endpoint using the JWT-bearer grant. Tokens live in an
injected TokenCache and are reused until they come within the safety margin
of expiry. There is no lock around a cache miss: concurrent callers may each
run an exchange, and every resulting token is valid.
"""

import json
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass

import httpx
from google.auth import crypt, jwt

from config import settings
from errors import CredentialExchangeFailed, ServiceNotConfigured, UpstreamTimeout

logger = logging.getLogger(__name__)

SPREADSHEETS_SCOPE = "https://www.googleapis.com/auth/spreadsheets"
JWT_BEARER_GRANT = "urn:ietf:params:oauth:grant-type:jwt-bearer"
ASSERTION_LIFETIME_SECONDS = 3600


@dataclass(frozen=True)
class CachedCredential:
    token: str
    expires_at: int  # epoch seconds

    def is_fresh(self, now: int, safety_margin: int) -> bool:
        return now < self.expires_at - safety_margin


class TokenCache:
    """Holds at most one credential. Entries are replaced, never mutated."""

    def __init__(self) -> None:
        self._credential: CachedCredential | None = None

    def get(self) -> CachedCredential | None:
        return self._credential

    def set(self, credential: CachedCredential) -> None:
        self._credential = credential


@dataclass(frozen=True)
class ServiceAccount:
    client_email: str
    private_key: str
    token_uri: str

    @classmethod
    def from_json(cls, raw: str, default_token_uri: str) -> "ServiceAccount":
        """Parse the service-account JSON document (only the fields we use)."""
        if not raw:
            raise ServiceNotConfigured("GOOGLE_SERVICE_ACCOUNT_JSON is not set")
        try:
            info = json.loads(raw)
        except json.JSONDecodeError as e:
            raise ServiceNotConfigured("GOOGLE_SERVICE_ACCOUNT_JSON is not valid JSON") from e
        if not isinstance(info, dict):
            raise ServiceNotConfigured("GOOGLE_SERVICE_ACCOUNT_JSON must be a JSON object")

        missing = [key for key in ("client_email", "private_key") if not info.get(key)]
        if missing:
            raise ServiceNotConfigured(
                f"Service account JSON is missing: {', '.join(missing)}"
            )

        return cls(
            client_email=info["client_email"],
            private_key=info["private_key"],
            token_uri=info.get("token_uri") or default_token_uri,
        )


def build_assertion(account: ServiceAccount, signer: crypt.Signer, now: int) -> str:
    """Return the signed ``header.payload.signature`` JWT for the JWT-bearer grant."""
    payload = {
        "iss": account.client_email,
        "scope": SPREADSHEETS_SCOPE,
        "aud": account.token_uri,
        "iat": now,
        "exp": now + ASSERTION_LIFETIME_SECONDS,
    }
    return jwt.encode(signer, payload).decode("ascii")


class ServiceAccountTokenSource:
    """Produces bearer tokens for the spreadsheet API."""

    def __init__(
        self,
        service_account_json: str | None = None,
        cache: TokenCache | None = None,
        token_url: str | None = None,
        safety_margin: int | None = None,
        timeout: float | None = None,
        connect_timeout: float | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self._service_account_json = (
            service_account_json
            if service_account_json is not None
            else settings.GOOGLE_SERVICE_ACCOUNT_JSON
        )
        self._cache = cache if cache is not None else TokenCache()
        self._token_url = token_url or settings.GOOGLE_TOKEN_URL
        self._safety_margin = (
            safety_margin if safety_margin is not None else settings.TOKEN_SAFETY_MARGIN_SECONDS
        )
        self._clock = clock
        self._account: ServiceAccount | None = None
        self._signer: crypt.Signer | None = None

        read_timeout = timeout if timeout is not None else settings.UPSTREAM_TIMEOUT_SECONDS
        conn_timeout = connect_timeout if connect_timeout is not None else settings.UPSTREAM_CONNECT_TIMEOUT

        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(read_timeout, connect=conn_timeout),
        )

    @property
    def cache(self) -> TokenCache:
        return self._cache

    async def aclose(self) -> None:
        await self._client.aclose()

    async def get_access_token(self) -> str:
        """Return a cached token, or exchange a fresh assertion for a new one.

        The cache-hit path makes no network call.
        """
        now = int(self._clock())
        cached = self._cache.get()
        if cached is not None and cached.is_fresh(now, self._safety_margin):
            logger.debug("Using cached spreadsheet token (expires in %ds)", cached.expires_at - now)
            return cached.token

        account, signer = self._load_identity()
        assertion = build_assertion(account, signer, now)
        credential = await self._exchange(account.token_uri, assertion, now)
        self._cache.set(credential)
        logger.info(
            "Obtained spreadsheet token for %s (expires in %ds)",
            account.client_email,
            credential.expires_at - now,
        )
        return credential.token

    def _load_identity(self) -> tuple[ServiceAccount, crypt.Signer]:
        if self._account is None or self._signer is None:
            account = ServiceAccount.from_json(self._service_account_json, self._token_url)
            try:
                signer = crypt.RSASigner.from_string(account.private_key)
            except ValueError as e:
                raise ServiceNotConfigured("Service account private key could not be loaded") from e
            self._account, self._signer = account, signer
        return self._account, self._signer

    async def _exchange(self, token_uri: str, assertion: str, now: int) -> CachedCredential:
        try:
            resp = await self._client.post(
                token_uri,
                data={"grant_type": JWT_BEARER_GRANT, "assertion": assertion},
            )
        except httpx.TimeoutException as e:
            logger.error("Token endpoint timed out: %s", e)
            raise UpstreamTimeout(f"Token endpoint timed out: {e}") from e
        except httpx.HTTPError as e:
            logger.error("Token endpoint request failed: %s", e)
            raise CredentialExchangeFailed(f"Token endpoint request failed: {e}") from e

        if not resp.is_success:
            # Raw body goes to the log only; the client sees a generic message.
            logger.error("Token exchange failed (%d): %s", resp.status_code, resp.text)
            raise CredentialExchangeFailed(resp.text)

        try:
            data = resp.json()
            token = data["access_token"]
            expires_in = int(data.get("expires_in", ASSERTION_LIFETIME_SECONDS))
        except (ValueError, KeyError, TypeError) as e:
            logger.error("Token endpoint returned an unexpected body: %s", resp.text[:200])
            raise CredentialExchangeFailed(f"Malformed token response: {resp.text[:200]}") from e

        return CachedCredential(token=token, expires_at=now + expires_in)
