import logging
from typing import Annotated, Any, Dict, Optional

import jwt
import requests
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer
from jwt.algorithms import RSAAlgorithm
from pydantic import BaseModel

from delivery_workflow import config
from delivery_workflow.db_models.enums import Role

logger = logging.getLogger(__name__)

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="token", auto_error=False)


class AuthenticatedUser(BaseModel):
    user_id: str
    username: str
    role: Optional[Role] = None
    company_id: Optional[str] = None
    email: str | None = None
    full_name: str | None = None
    disabled: bool | None = False


def get_signing_keys() -> Dict[str, Any]:
    """Fetch public keys from the identity provider's JWKS endpoint."""
    response = requests.get(config.JWT_JWKS_URL, timeout=10)
    response.raise_for_status()
    jwks_data = response.json()
    logger.debug("Fetched %d key(s) from JWKS", len(jwks_data.get("keys", [])))
    return jwks_data


def _role_from_claims(payload: Dict[str, Any]) -> Optional[Role]:
    candidates = []
    if payload.get("role"):
        candidates.append(payload["role"])
    candidates.extend(payload.get("realm_access", {}).get("roles", []))
    for candidate in candidates:
        try:
            return Role(str(candidate).upper())
        except ValueError:
            continue
    return None


def decode_token(token: str) -> Dict[str, Any]:
    """Verify the bearer token and return its claims.

    With ``JWT_JWKS_URL`` set every published RS256 key is tried in turn;
    otherwise the token must be signed with ``JWT_SECRET``.
    """
    options = {"verify_aud": config.JWT_AUDIENCE is not None}
    if not config.JWT_JWKS_URL:
        return jwt.decode(
            token,
            config.JWT_SECRET,
            algorithms=[config.JWT_ALGORITHM],
            audience=config.JWT_AUDIENCE,
            issuer=config.JWT_ISSUER,
            options=options,
        )

    last_exception: Optional[Exception] = None
    for key_data in get_signing_keys().get("keys", []):
        try:
            return jwt.decode(
                token,
                RSAAlgorithm.from_jwk(key_data),
                algorithms=["RS256"],
                audience=config.JWT_AUDIENCE,
                issuer=config.JWT_ISSUER,
                options=options,
            )
        except jwt.ExpiredSignatureError:
            raise
        except jwt.InvalidTokenError as e:
            logger.debug("Token rejected by key %s: %s", key_data.get("kid", "N/A"), e)
            last_exception = e
    raise last_exception or jwt.InvalidTokenError("No signing keys available")


async def get_current_user(request: Request, token: Annotated[str, Depends(oauth2_scheme)]) -> AuthenticatedUser:
    """Extract user information from the bearer token."""
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Invalid authentication credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    if not token:
        token = request.cookies.get("access_token", "")

    if not token:
        raise credentials_exception

    try:
        payload = decode_token(token)
    except jwt.InvalidTokenError as e:
        logger.warning("Rejected bearer token: %s", e)
        raise credentials_exception from e
    except requests.RequestException as e:
        logger.error("Could not fetch signing keys: %s", e)
        raise credentials_exception from e

    user_id = payload.get("sub", "")
    username = payload.get("preferred_username", "") or user_id
    if not user_id:
        raise credentials_exception

    return AuthenticatedUser(
        user_id=user_id,
        username=username,
        role=_role_from_claims(payload),
        company_id=payload.get("company_id"),
        email=payload.get("email"),
        full_name=payload.get("name"),
        disabled=False,
    )


async def get_current_active_user(current_user: Annotated[AuthenticatedUser, Depends(get_current_user)]) -> AuthenticatedUser:
    if current_user.disabled:
        raise HTTPException(status_code=400, detail="Inactive user")
    return current_user


def require_roles(*roles: Role):
    """Dependency factory limiting an endpoint to the given roles."""
    allowed = set(roles)

    async def dependency(current_user: Annotated[AuthenticatedUser, Depends(get_current_active_user)]) -> AuthenticatedUser:
        if current_user.role not in allowed:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient role")
        return current_user

    return dependency
