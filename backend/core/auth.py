import logging
import uuid
from abc import ABC, abstractmethod
from typing import Optional

from fastapi import Depends, Request
from fastapi_users import BaseUserManager, FastAPIUsers, UUIDIDMixin
from fastapi_users.authentication import AuthenticationBackend, BearerTransport, JWTStrategy

from core.config import settings
from core.exceptions import Unauthenticated
from db.users import User, get_user_db

logger = logging.getLogger(__name__)


class UserManager(UUIDIDMixin, BaseUserManager[User, uuid.UUID]):
    reset_password_token_secret = settings.jwt_secret
    verification_token_secret = settings.jwt_secret

    async def on_after_register(self, user: User, request: Optional[Request] = None):
        logger.info("user %s registered", user.id)


async def get_user_manager(user_db=Depends(get_user_db)):
    yield UserManager(user_db)


bearer_transport = BearerTransport(tokenUrl="auth/jwt/login")


def get_jwt_strategy() -> JWTStrategy:
    return JWTStrategy(secret=settings.jwt_secret, lifetime_seconds=settings.jwt_lifetime_seconds)


auth_backend = AuthenticationBackend(
    name="jwt",
    transport=bearer_transport,
    get_strategy=get_jwt_strategy,
)

fastapi_users = FastAPIUsers[User, uuid.UUID](get_user_manager, [auth_backend])

optional_current_user = fastapi_users.current_user(active=True, optional=True)


class IdentityProvider(ABC):
    """Answers "who is calling?" for a single request."""

    @abstractmethod
    async def authenticate(self) -> Optional[str]:
        """Return the caller's user id, or None when there is no valid session."""


class SessionIdentityProvider(IdentityProvider):
    """Identity taken from the fastapi-users JWT session."""

    def __init__(self, user: Optional[User]):
        self.user = user

    async def authenticate(self) -> Optional[str]:
        if self.user is None:
            return None
        return str(self.user.id)


async def get_identity_provider(user: Optional[User] = Depends(optional_current_user)) -> IdentityProvider:
    return SessionIdentityProvider(user)


async def require_user_id(identity: IdentityProvider = Depends(get_identity_provider)) -> str:
    user_id = await identity.authenticate()
    if user_id is None:
        raise Unauthenticated()
    return user_id
