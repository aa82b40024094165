"""
auth/oauth.py -- Authlib OAuth client registration and assertion fetching.

build_oauth() registers a client only for providers whose client id and
secret are both configured. The registry is built in the app lifespan and
stored on app.state.oauth rather than created as an import-time global.

OAuth state parameter handling is done by authlib via Starlette
SessionMiddleware: the state is stored in the signed session cookie between
the authorization redirect and the callback.

Supported providers:
  google   -- Authorization code flow; OIDC discovery. The id_token's
              userinfo claims (name, email, email_verified) are the assertion.
  facebook -- Authorization code flow; static Graph API endpoints. The
              assertion is GET /me?fields=id,name,email.

Layer rule: no imports from api/ or web/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx
from authlib.integrations.starlette_client import OAuth

from auth.errors import ProviderError
from core.config import Settings

logger = logging.getLogger("authgate.auth.oauth")

_FACEBOOK_GRAPH = "https://graph.facebook.com/v19.0/"

_LABELS = {"google": "Google", "facebook": "Facebook"}


def build_oauth(settings: Settings) -> OAuth:
    """Return an authlib OAuth registry with every configured provider registered."""
    oauth = OAuth()

    if settings.provider_enabled("google"):
        oauth.register(
            name="google",
            client_id=settings.google_client_id,
            client_secret=settings.google_client_secret,
            server_metadata_url="https://accounts.google.com/.well-known/openid-configuration",
            client_kwargs={"scope": "openid email profile"},
        )
        logger.info("Google OAuth provider registered")

    if settings.provider_enabled("facebook"):
        oauth.register(
            name="facebook",
            client_id=settings.facebook_client_id,
            client_secret=settings.facebook_client_secret,
            access_token_url=_FACEBOOK_GRAPH + "oauth/access_token",  # noqa: S106 -- URL, not a password
            authorize_url="https://www.facebook.com/v19.0/dialog/oauth",
            api_base_url=_FACEBOOK_GRAPH,
            client_kwargs={"scope": "email public_profile", "token_endpoint_auth_method": "client_secret_post"},
        )
        logger.info("Facebook OAuth provider registered")

    return oauth


def get_enabled_providers(settings: Settings) -> list[dict]:
    """Return {"name", "label"} for every configured provider.

    Used by GET /api/v1/auth/providers and the /login and /signup pages to
    decide which provider buttons to offer.
    """
    return [{"name": name, "label": label} for name, label in _LABELS.items() if settings.provider_enabled(name)]


def callback_url(settings: Settings, provider: str) -> str:
    """Return the configured callback URL for provider, or "" to derive it from the request."""
    return getattr(settings, f"{provider}_callback_url", "")


# ---------------------------------------------------------------------------
# Assertion extraction -- provider-specific normalization
# ---------------------------------------------------------------------------


async def fetch_assertion(client, provider: str, token: dict) -> dict[str, Any]:
    """Return the provider's identity claims for an exchanged token.

    Raises ProviderError if the provider response is missing or unusable. The
    caller treats that like a rejected login.
    """
    if provider == "google":
        userinfo = token.get("userinfo")
        if not userinfo:
            raise ProviderError("google: no userinfo in token response")
        return dict(userinfo)
    if provider == "facebook":
        return await _get_facebook_profile(client, token)
    raise ProviderError(f"Unknown OAuth provider: {provider!r}")


async def _get_facebook_profile(client, token: dict) -> dict[str, Any]:
    """Fetch id, name and (if granted) email from the Graph API.

    Facebook omits "email" when the user has no confirmed address or declined
    the permission. The strategy substitutes the synthetic fallback address.
    """
    try:
        resp = await client.get("me", params={"fields": "id,name,email"}, token=token)
        resp.raise_for_status()
        profile = resp.json()
    except (httpx.HTTPError, ValueError) as exc:
        raise ProviderError("facebook: profile request failed") from exc
    if not isinstance(profile, dict):
        raise ProviderError("facebook: unexpected profile payload")
    return profile
