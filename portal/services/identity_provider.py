"""OIDC identity provider adapter — authorization code flow over httpx.

Turns a provider callback into an :class:`OAuthTokens` + :class:`VerifiedProfile`
pair. Nothing here decides who may sign in; that is the reconciler's job.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import urlencode

import httpx

from portal.core.config import Settings, get_settings
from portal.core.errors import ConfigurationError, UpstreamUnavailable

logger = logging.getLogger(__name__)

DISCOVERY_PATH = "/.well-known/openid-configuration"


@dataclass
class OAuthTokens:
    access_token: str | None = None
    refresh_token: str | None = None
    id_token: str | None = None
    expires_at: int | None = None
    token_type: str | None = None
    scope: str | None = None
    session_state: str | None = None
    type: str = "oauth"

    @classmethod
    def from_response(cls, data: dict[str, Any]) -> "OAuthTokens":
        expires_at = data.get("expires_at")
        if expires_at is None and isinstance(data.get("expires_in"), int):
            expires_at = int(time.time()) + data["expires_in"]
        return cls(
            access_token=data.get("access_token"),
            refresh_token=data.get("refresh_token"),
            id_token=data.get("id_token"),
            expires_at=expires_at,
            token_type=data.get("token_type"),
            scope=data.get("scope"),
            session_state=data.get("session_state"),
        )


@dataclass
class VerifiedProfile:
    """What the provider asserts about the person. Every field may be absent."""

    provider: str | None = None
    provider_account_id: str | None = None
    phone_number: str | None = None
    email: str | None = None
    email_verified: bool | None = None
    name: str | None = None
    address: dict[str, Any] | None = None
    raw: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_claims(cls, provider: str | None, claims: dict[str, Any]) -> "VerifiedProfile":
        def _str(key: str) -> str | None:
            value = claims.get(key)
            return value if isinstance(value, str) and value else None

        verified = claims.get("email_verified")
        address = claims.get("address")
        return cls(
            provider=provider,
            provider_account_id=_str("sub"),
            phone_number=_str("phone_number"),
            email=_str("email"),
            email_verified=verified if isinstance(verified, bool) else None,
            name=_str("name"),
            address=address if isinstance(address, dict) else None,
            raw=claims,
        )


def map_address(address: dict[str, Any] | None) -> dict[str, str]:
    """Map a provider address object onto user columns, skipping absent parts."""
    if not isinstance(address, dict):
        return {}
    mapping = {
        "street_address": "address_street",
        "postal_code": "address_postal_code",
        "region": "address_region",
    }
    return {
        column: address[key]
        for key, column in mapping.items()
        if isinstance(address.get(key), str) and address[key]
    }


class IdentityProvider:
    """Thin OIDC client for one configured provider."""

    def __init__(self, settings: Settings | None = None) -> None:
        self.settings = settings or get_settings()
        self.name = self.settings.oidc_provider_name
        self._metadata: dict[str, Any] | None = None

    def _require_config(self) -> None:
        missing = [
            key
            for key in ("oidc_client_id", "oidc_client_secret", "oidc_issuer")
            if not getattr(self.settings, key)
        ]
        if missing:
            raise ConfigurationError(details={"missing": missing})

    async def _request(self, method: str, url: str, **kwargs: Any) -> dict[str, Any]:
        try:
            async with httpx.AsyncClient(timeout=10) as client:
                resp = await client.request(method, url, **kwargs)
        except httpx.HTTPError as exc:
            raise UpstreamUnavailable(details={"url": url, "error": str(exc)}) from exc
        if resp.status_code >= 400:
            logger.warning("Identity provider returned %s for %s", resp.status_code, url)
            raise UpstreamUnavailable(
                details={"url": url, "status": resp.status_code, "body": resp.text[:500]}
            )
        try:
            return resp.json()
        except ValueError as exc:
            logger.warning("Identity provider returned non-JSON for %s", url)
            raise UpstreamUnavailable(details={"url": url, "body": resp.text[:500]}) from exc

    async def metadata(self) -> dict[str, Any]:
        self._require_config()
        if self._metadata is None:
            issuer = self.settings.oidc_issuer.rstrip("/")
            self._metadata = await self._request("GET", f"{issuer}{DISCOVERY_PATH}")
        return self._metadata

    async def authorization_url(self, state: str, redirect_uri: str) -> str:
        meta = await self.metadata()
        query = urlencode({
            "response_type": "code",
            "client_id": self.settings.oidc_client_id,
            "redirect_uri": redirect_uri,
            "scope": self.settings.oidc_scope,
            "state": state,
        })
        return f"{meta['authorization_endpoint']}?{query}"

    async def exchange_code(self, code: str, redirect_uri: str) -> OAuthTokens:
        meta = await self.metadata()
        data = await self._request(
            "POST",
            meta["token_endpoint"],
            data={
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": redirect_uri,
            },
            auth=(self.settings.oidc_client_id, self.settings.oidc_client_secret),
            headers={"Accept": "application/json"},
        )
        return OAuthTokens.from_response(data)

    async def fetch_profile(self, tokens: OAuthTokens) -> VerifiedProfile:
        meta = await self.metadata()
        claims = await self._request(
            "GET",
            meta["userinfo_endpoint"],
            headers={
                "Authorization": f"Bearer {tokens.access_token}",
                "Accept": "application/json",
            },
        )
        return VerifiedProfile.from_claims(self.name, claims)


def get_identity_provider() -> IdentityProvider:
    """FastAPI dependency; overridden in tests."""
    return IdentityProvider()
