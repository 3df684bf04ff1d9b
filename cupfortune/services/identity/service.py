"""Identity provider: bearer-token verification and verified-email lookup."""

from abc import ABC, abstractmethod

import httpx
import jwt
from pydantic import BaseModel

from cupfortune.common.errors import AuthenticationRequired, IdentityError
from cupfortune.common.logging import logger


class Principal(BaseModel):
    """The authenticated caller."""

    user_id: str
    email: str | None = None
    email_verified: bool = False


class IdentityProvider(ABC):
    @abstractmethod
    def authenticate(self, token: str) -> Principal:
        raise NotImplementedError

    @abstractmethod
    def verified_email(self, principal: Principal) -> str | None:
        """Return the caller's verified email address, never a client-supplied one."""
        raise NotImplementedError


def _primary_verified_email(user: dict) -> str | None:
    primary_id = user.get("primary_email_address_id")
    verified = [
        entry
        for entry in user.get("email_addresses", [])
        if (entry.get("verification") or {}).get("status") == "verified"
    ]
    for entry in verified:
        if entry.get("id") == primary_id:
            return entry.get("email_address")
    return verified[0].get("email_address") if verified else None


class JwtIdentityProvider(IdentityProvider):
    """Verifies session JWTs (HS256 secret or JWKS) and reads users from the provider API."""

    def __init__(
        self,
        jwt_secret: str = "",
        issuer: str = "",
        jwks_url: str = "",
        api_url: str = "",
        api_key: str = "",
        timeout_seconds: float = 5.0,
    ) -> None:
        self.jwt_secret = jwt_secret
        self.issuer = issuer
        self.api_url = api_url.rstrip("/")
        self.api_key = api_key
        self.timeout_seconds = timeout_seconds
        self.jwks_client = jwt.PyJWKClient(jwks_url) if jwks_url else None

    def _decode(self, token: str) -> dict:
        options = {"require": ["exp", "sub"]}
        issuer = self.issuer or None
        if self.jwks_client is not None:
            signing_key = self.jwks_client.get_signing_key_from_jwt(token)
            return jwt.decode(
                token, signing_key.key, algorithms=["RS256", "ES256"], issuer=issuer, options=options
            )
        return jwt.decode(token, self.jwt_secret, algorithms=["HS256"], issuer=issuer, options=options)

    def authenticate(self, token):
        try:
            claims = self._decode(token)
        except jwt.PyJWTError as exc:
            logger.info("token_rejected error=%s", exc)
            raise AuthenticationRequired(details=str(exc)) from exc
        return Principal(
            user_id=claims["sub"],
            email=claims.get("email"),
            email_verified=bool(claims.get("email_verified", False)),
        )

    def verified_email(self, principal):
        if not self.api_key:
            # No backend API configured: fall back to the signed token claims.
            return principal.email if principal.email_verified else None
        try:
            with httpx.Client(timeout=self.timeout_seconds) as client:
                resp = client.get(
                    f"{self.api_url}/users/{principal.user_id}",
                    headers={"Authorization": f"Bearer {self.api_key}"},
                )
        except httpx.HTTPError as exc:
            raise IdentityError("Failed to look up user", details=str(exc)) from exc
        if resp.status_code == 404:
            return None
        if resp.status_code >= 400:
            raise IdentityError("Failed to look up user", details=f"status={resp.status_code}")
        return _primary_verified_email(resp.json())
