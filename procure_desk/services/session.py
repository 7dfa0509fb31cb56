"""
Session/identity provider consumed by the API client and the approval flow.

Token storage mechanics belong to the host (browser session, CLI env vars,
incoming request headers); the core only reads tokens and the current actor,
stores a refreshed access token, and clears everything when refresh fails.
"""

from abc import ABC, abstractmethod
from typing import Optional
from ..models.request import Actor


class SessionStore(ABC):
    """
    Abstract base class for session storage.

    Implementations can hold:
    - Tokens for a single CLI invocation
    - Tokens forwarded on an incoming HTTP request
    - A server-side session keyed by cookie
    """

    @abstractmethod
    def get_access_token(self) -> Optional[str]:
        """Return the bearer token to attach to API calls, or None"""
        pass

    @abstractmethod
    def get_refresh_token(self) -> Optional[str]:
        """Return the refresh token, or None when refresh is not possible"""
        pass

    @abstractmethod
    def set_access_token(self, token: str) -> None:
        """Store a freshly refreshed access token"""
        pass

    @abstractmethod
    def get_actor(self) -> Optional[Actor]:
        """Return the signed-in actor, or None if not yet known"""
        pass

    @abstractmethod
    def set_actor(self, actor: Actor) -> None:
        """Remember the signed-in actor"""
        pass

    @abstractmethod
    def clear(self) -> None:
        """Drop tokens and identity (used when token refresh fails)"""
        pass

    @property
    def is_authenticated(self) -> bool:
        return self.get_access_token() is not None


class InMemorySessionStore(SessionStore):
    def __init__(
        self,
        access_token: Optional[str] = None,
        refresh_token: Optional[str] = None,
        actor: Optional[Actor] = None,
    ):
        self._access_token = access_token
        self._refresh_token = refresh_token
        self._actor = actor

    def get_access_token(self) -> Optional[str]:
        return self._access_token

    def get_refresh_token(self) -> Optional[str]:
        return self._refresh_token

    def set_access_token(self, token: str) -> None:
        self._access_token = token

    def get_actor(self) -> Optional[Actor]:
        return self._actor

    def set_actor(self, actor: Actor) -> None:
        self._actor = actor

    def clear(self) -> None:
        self._access_token = None
        self._refresh_token = None
        self._actor = None
