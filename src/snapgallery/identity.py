"""
Identity provider adapter.

Token verification, sign-up and sign-in are delegated to Supabase Auth.
Any verification failure is reported uniformly as unauthenticated.
"""

import logging
import re
from typing import Any, Dict, Optional

import httpx

from .config import Settings
from .errors import AuthError, ValidationError
from .models.schemas import AuthenticatedUser, SessionResponse

logger = logging.getLogger(__name__)

_EMAIL_RE = re.compile(r".+@.+\..+")


class IdentityError(Exception):
    """Identity provider errors."""


def _provider_message(response: httpx.Response, fallback: str) -> str:
    try:
        body = response.json()
    except ValueError:
        return fallback
    if isinstance(body, dict):
        for key in ("msg", "message", "error_description", "error"):
            if isinstance(body.get(key), str) and body[key]:
                return body[key]
    return fallback


class IdentityProvider:
    """Supabase Auth client."""

    def __init__(
        self,
        base_url: Optional[str],
        api_key: Optional[str],
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or "").rstrip("/")
        self.api_key = api_key or ""
        self.timeout = timeout
        self.transport = transport

    @classmethod
    def from_settings(cls, settings: Settings) -> "IdentityProvider":
        return cls(settings.supabase_url, settings.supabase_service_role_key)

    async def _request(
        self,
        method: str,
        path: str,
        token: Optional[str] = None,
        json: Optional[Dict[str, Any]] = None,
    ) -> httpx.Response:
        if not self.base_url:
            raise IdentityError("Identity provider is not configured")

        headers = {"apikey": self.api_key}
        if token:
            headers["Authorization"] = f"Bearer {token}"

        try:
            async with httpx.AsyncClient(transport=self.transport) as client:
                return await client.request(
                    method,
                    f"{self.base_url}/auth/v1{path}",
                    headers=headers,
                    json=json,
                    timeout=self.timeout,
                )
        except httpx.RequestError as e:
            raise IdentityError(f"Identity provider request failed: {e}") from e

    async def get_user(self, token: str) -> AuthenticatedUser:
        """
        Resolve a bearer token to a user.

        Raises:
            AuthError: On any failure
        """
        if not token:
            raise AuthError()

        try:
            response = await self._request("GET", "/user", token=token)
            if response.status_code != 200:
                raise AuthError()
            body = response.json()
            if not isinstance(body, dict) or not body.get("id"):
                raise AuthError()
        except AuthError:
            raise
        except Exception as e:
            logger.error(f"Token verification error: {e}")
            raise AuthError() from e

        return AuthenticatedUser(user_id=str(body["id"]), email=body.get("email"))

    async def sign_up(
        self, email: Optional[str], password: Optional[str]
    ) -> Dict[str, Any]:
        """
        Register a new account.

        Raises:
            ValidationError: On invalid input or provider rejection
        """
        if not isinstance(email, str) or not _EMAIL_RE.match(email):
            raise ValidationError("Invalid email")
        if not isinstance(password, str) or len(password) < 8:
            raise ValidationError("Password must be at least 8 characters")

        try:
            response = await self._request(
                "POST", "/signup", json={"email": email, "password": password}
            )
        except IdentityError as e:
            logger.error(f"Signup failed: {e}")
            raise ValidationError("Signup failed") from e

        if response.status_code >= 400:
            raise ValidationError(_provider_message(response, "Signup failed"))

        body = response.json()
        return body.get("user", body) if isinstance(body, dict) else {}

    async def sign_in(
        self, email: Optional[str], password: Optional[str]
    ) -> SessionResponse:
        """
        Exchange email and password for a session.

        Raises:
            ValidationError: If email or password is missing
            AuthError: If the provider rejects the credentials
        """
        if not email or not password:
            raise ValidationError("Email and password are required")

        try:
            response = await self._request(
                "POST",
                "/token?grant_type=password",
                json={"email": email, "password": password},
            )
        except IdentityError as e:
            logger.error(f"Signin failed: {e}")
            raise AuthError("Signin failed") from e

        if response.status_code >= 400:
            raise AuthError(_provider_message(response, "Signin failed"))

        body = response.json()
        return SessionResponse(
            access_token=body.get("access_token"),
            refresh_token=body.get("refresh_token"),
            user=body.get("user"),
        )
