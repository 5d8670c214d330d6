"""Authentication session service backed by signed JWT access tokens"""

import inspect
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from jose import JWTError, jwt

from projectflow.config import settings
from projectflow.schemas.auth import AuthChangeEvent, Session
from projectflow.services.redis_service import RedisService

logger = logging.getLogger(__name__)

AuthListener = Callable[[AuthChangeEvent, Optional[Session]], Union[None, Awaitable[None]]]


class InvalidTokenError(Exception):
    """Access token failed validation or was revoked"""
    pass


class AuthSubscription:
    """Handle returned by on_auth_state_change()"""

    def __init__(self, service: "AuthSessionService", callback: AuthListener):
        self._service = service
        self.callback = callback

    def unsubscribe(self):
        self._service._remove_listener(self.callback)


class AuthSessionService:
    """
    Holds the current session and notifies listeners on auth-state changes.

    Tokens are issued by the identity provider (or create_access_token() in
    development) and validated here; signing out revokes the token through the
    Redis blacklist so other processes reject it too.
    """

    def __init__(self, redis_service: Optional[RedisService] = None):
        self.redis = redis_service
        self._session: Optional[Session] = None
        self._listeners: List[AuthListener] = []

    @staticmethod
    def _secret() -> str:
        # Use jwt_secret if available, otherwise fall back to secret_key
        return settings.jwt_secret or settings.secret_key

    @staticmethod
    def generate_token(data: Dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
        """
        Generate a JWT access token with the provided claims

        Args:
            data: Dictionary of claims to include in the token
            expires_delta: Optional expiration time delta (defaults to jwt_expiration_hours)

        Returns:
            Encoded JWT token string
        """
        to_encode = data.copy()
        now = datetime.now(timezone.utc)
        expire = now + (expires_delta or timedelta(hours=settings.jwt_expiration_hours))

        to_encode.update({
            "exp": expire,
            "iat": now,
            "iss": settings.jwt_issuer,
            "type": "access",
        })
        return jwt.encode(to_encode, AuthSessionService._secret(), algorithm=settings.jwt_algorithm)

    @staticmethod
    def create_access_token(user_id: str, email: Optional[str] = None,
                            expires_delta: Optional[timedelta] = None) -> str:
        """
        Create an access token for a user

        Args:
            user_id: Identity subject (equals the profile id)
            email: User email
            expires_delta: Optional lifetime override

        Returns:
            JWT access token
        """
        data: Dict[str, Any] = {"sub": user_id}
        if email:
            data["email"] = email
        return AuthSessionService.generate_token(data, expires_delta)

    @staticmethod
    def decode_token(token: str) -> Optional[Dict[str, Any]]:
        """
        Decode and validate a JWT token (signature, expiry, issuer, type)

        Args:
            token: JWT token string to decode

        Returns:
            Dictionary of token claims if valid, None otherwise
        """
        try:
            payload = jwt.decode(
                token,
                AuthSessionService._secret(),
                algorithms=[settings.jwt_algorithm],
                issuer=settings.jwt_issuer,
            )
        except JWTError:
            return None

        if payload.get("type") != "access" or not payload.get("sub"):
            return None
        return payload

    async def _validate(self, token: str) -> Session:
        payload = self.decode_token(token)
        if payload is None:
            raise InvalidTokenError("Invalid or expired access token")

        if self.redis is not None and await self.redis.is_token_blacklisted(token):
            raise InvalidTokenError("Access token has been revoked")

        return Session(
            access_token=token,
            user_id=str(payload["sub"]),
            email=payload.get("email"),
            expires_at=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
        )

    async def get_current_session(self) -> Optional[Session]:
        """
        Return the current session if its token is still valid.

        An expired or revoked token drops the session silently; listeners are
        not notified here.
        """
        if self._session is None:
            return None

        try:
            self._session = await self._validate(self._session.access_token)
        except InvalidTokenError as e:
            logger.info(f"Dropping current session: {e}")
            self._session = None
        return self._session

    async def set_session(self, access_token: str) -> Session:
        """
        Adopt an access token as the current session and notify listeners.

        Raises:
            InvalidTokenError: If the token is invalid, expired or revoked
        """
        previous = self._session
        session = await self._validate(access_token)
        self._session = session

        if previous is not None and previous.user_id == session.user_id:
            event = AuthChangeEvent.TOKEN_REFRESHED
        else:
            event = AuthChangeEvent.SIGNED_IN
        logger.info(f"Auth state change: {event.value} for user {session.user_id}")
        await self._notify(event, session)
        return session

    async def sign_out(self) -> None:
        """Revoke the current token, clear the session and notify listeners"""
        session = self._session
        self._session = None

        if session is not None and self.redis is not None:
            remaining = int((session.expires_at - datetime.now(timezone.utc)).total_seconds())
            if remaining > 0:
                await self.redis.blacklist_token(session.access_token, remaining)

        logger.info("Auth state change: SIGNED_OUT")
        await self._notify(AuthChangeEvent.SIGNED_OUT, None)

    def on_auth_state_change(self, callback: AuthListener) -> AuthSubscription:
        """Register a listener called as callback(event, session)"""
        self._listeners.append(callback)
        return AuthSubscription(self, callback)

    def _remove_listener(self, callback: AuthListener):
        if callback in self._listeners:
            self._listeners.remove(callback)

    async def _notify(self, event: AuthChangeEvent, session: Optional[Session]):
        for callback in list(self._listeners):
            result = callback(event, session)
            if inspect.isawaitable(result):
                await result
