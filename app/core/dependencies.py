import logging

import jwt
from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from pydantic import ValidationError as PydanticValidationError

from app.core.config import JWT_ALGORITHM, JWT_SECRET_KEY
from app.core.exceptions import AuthenticationError, ConfigurationError
from app.core.permissions import Actor

logger = logging.getLogger(__name__)

security = HTTPBearer(
    scheme_name="Bearer token",
    description="Access token issued by the identity service",
    auto_error=False,
)


def decode_actor(token: str) -> Actor:
    """
    Разбирает access token сервиса аутентификации в Actor.

    Raises:
        ConfigurationError: Если секрет JWT не настроен
        AuthenticationError: Если токен просрочен или некорректен
    """
    if not JWT_SECRET_KEY:
        raise ConfigurationError("JWT_SECRET_KEY", "JWT secret is not configured")

    try:
        payload = jwt.decode(token, JWT_SECRET_KEY, algorithms=[JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        logger.warning("Access token has expired")
        raise AuthenticationError("Token has expired")
    except jwt.InvalidTokenError:
        logger.warning("Invalid access token provided")
        raise AuthenticationError("Invalid token")

    try:
        return Actor(id=int(payload.get("id")), role=payload.get("role"))
    except (TypeError, ValueError, PydanticValidationError):
        raise AuthenticationError("Token does not carry a valid user id and role")


async def get_current_actor(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> Actor:
    """Dependency для получения текущего пользователя из Bearer токена"""
    if credentials is None or not credentials.credentials.strip():
        raise AuthenticationError("Authentication data is required")

    return decode_actor(credentials.credentials)
