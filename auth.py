"""
Session handling against the external auth service.

Passwords, one-time codes and token issuing all live in the auth service;
this module only talks to its REST API and reads the access tokens it
hands out.
"""
import logging
from functools import lru_cache
from typing import Optional

import httpx
from fastapi import Depends, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from sqlalchemy.orm import Session

import models
from config import Config
from errors import ApiError

logger = logging.getLogger(__name__)

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login", auto_error=False)


class AuthError(Exception):
    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class AuthClient:
    def __init__(self, base_url: str = Config.AUTH_URL, anon_key: str = Config.AUTH_ANON_KEY, http: Optional[httpx.Client] = None):
        self.base_url = base_url.rstrip("/") + "/auth/v1"
        self.anon_key = anon_key
        self.http = http or httpx.Client(timeout=10.0)

    def _request(self, method: str, path: str, access_token: Optional[str] = None, **kwargs):
        headers = {"apikey": self.anon_key, "Authorization": f"Bearer {access_token or self.anon_key}"}
        try:
            res = self.http.request(method, f"{self.base_url}{path}", headers=headers, **kwargs)
        except httpx.HTTPError as e:
            raise AuthError(f"Auth service unreachable: {e}", status.HTTP_502_BAD_GATEWAY) from e

        if res.status_code >= 400:
            try:
                body = res.json()
            except ValueError:
                body = {}
            message = (
                body.get("msg")
                or body.get("error_description")
                or body.get("message")
                or body.get("error")
                or res.text
                or f"Auth request failed with status {res.status_code}"
            )
            raise AuthError(message, res.status_code)

        if not res.content:
            return {}
        return res.json()

    def sign_in_with_password(self, email: str, password: str) -> dict:
        return self._request(
            "POST", "/token", params={"grant_type": "password"}, json={"email": email, "password": password}
        )

    def sign_in_with_otp(self, email: str, create_user: bool = False, data: Optional[dict] = None) -> dict:
        payload = {"email": email, "create_user": create_user}
        if data:
            payload["data"] = data
        return self._request("POST", "/otp", json=payload)

    def verify_otp(self, email: str, token: str, type: str = "email") -> dict:
        return self._request("POST", "/verify", json={"type": type, "email": email, "token": token})

    def get_user(self, access_token: str) -> dict:
        return self._request("GET", "/user", access_token=access_token)

    def sign_out(self, access_token: str):
        self._request("POST", "/logout", access_token=access_token)


@lru_cache()
def get_auth_client() -> AuthClient:
    return AuthClient()


# --------------------------- tokens ---------------------------
def decode_access_token(token: str) -> dict:
    return jwt.decode(
        token,
        Config.JWT_SECRET,
        algorithms=[Config.JWT_ALGORITHM],
        audience=Config.JWT_AUDIENCE,
    )


def get_optional_user(token: Optional[str] = Depends(oauth2_scheme)) -> Optional[dict]:
    if not token:
        return None
    try:
        claims = decode_access_token(token)
    except JWTError as e:
        logger.warning("Ignoring invalid access token: %s", e)
        return None
    if not claims.get("sub"):
        return None
    return claims


def get_current_user(claims: Optional[dict] = Depends(get_optional_user)) -> dict:
    if claims is None:
        raise ApiError(
            status.HTTP_401_UNAUTHORIZED,
            "Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return claims


def get_bearer_token(token: Optional[str] = Depends(oauth2_scheme)) -> str:
    if not token:
        raise ApiError(
            status.HTTP_401_UNAUTHORIZED,
            "Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return token


def ensure_profile(db: Session, claims: dict) -> models.UserProfile:
    """Return the profile of the signed-in identity, creating it on first sight."""
    profile = db.get(models.UserProfile, claims["sub"])
    if profile is None:
        metadata = claims.get("user_metadata") or {}
        profile = models.UserProfile(
            id=claims["sub"],
            full_name=metadata.get("full_name") or claims.get("email"),
            role=Config.DEFAULT_ROLE,
        )
        db.add(profile)
        db.commit()
        db.refresh(profile)
        logger.info("Created user profile for %s", claims["sub"])
    return profile
