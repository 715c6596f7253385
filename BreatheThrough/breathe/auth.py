"""
This module provides authentication for the BreatheThrough application.

It defines the `Session` object that carries the signed-in user through the app and the
`AuthManager` that registers, signs in and signs out patients against a `DataStore`.
The manager owns no data of its own: after a successful sign-in it notifies its
listener (the `AppState` coordinator) so the patient's health document is loaded, and
after sign-out it asks the listener to reset everything to defaults.
"""
# breathethrough/breathe/auth.py

import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from breathe.errors import RegistrationError
from breathe.models import User
from breathe.storage import DataStore

logger = logging.getLogger(__name__)

LoginListener = Callable[[User], Awaitable[None]]
LogoutListener = Callable[[], Awaitable[None]]


@dataclass
class Session:
    """The currently signed-in user, passed explicitly instead of held globally."""
    user: Optional[User] = None

    @property
    def is_authenticated(self) -> bool:
        return self.user is not None

    @property
    def user_id(self) -> Optional[str]:
        return self.user.id if self.user else None


class AuthManager:
    """Registers and signs in patients and keeps the `Session` up to date.

    Args:
        store (DataStore): The account store.
        session (Session): The session object to update. A new one is created if omitted.
        on_login: Coroutine function called with the user after login or registration.
        on_logout: Coroutine function called after logout.
    """

    def __init__(self, store: DataStore, session: Optional[Session] = None,
                 on_login: Optional[LoginListener] = None, on_logout: Optional[LogoutListener] = None):
        self.store = store
        self.session = session if session is not None else Session()
        self._on_login = on_login
        self._on_logout = on_logout

    async def register(self, email: str, password: str, name: str) -> User:
        """Creates an account and signs it in.

        Raises:
            RegistrationError: If the name, email or password is blank.
            DuplicateUser: If the email already has an account.
        """
        if not name or not name.strip():
            raise RegistrationError("Name is required")
        if not email or not password:
            raise RegistrationError("Email and password are required")
        user = await self.store.register(email, password, name)
        await self._signed_in(user)
        return user

    async def login(self, email: str, password: str) -> User:
        """Signs in an existing account.

        Raises:
            InvalidCredentials: If no account matches the email and password.
        """
        user = await self.store.login(email, password)
        await self._signed_in(user)
        return user

    async def logout(self) -> None:
        """Signs out. Calling it while signed out is harmless."""
        await self.store.logout()
        self.session.user = None
        if self._on_logout:
            await self._on_logout()

    async def restore(self) -> Optional[User]:
        """Restores the session persisted by the store, if any, and notifies the listener."""
        user = await self.store.get_current_user()
        if user is not None:
            logger.info("Restored session for user %s", user.id)
            await self._signed_in(user)
        return user

    async def _signed_in(self, user: User) -> None:
        self.session.user = user
        if self._on_login:
            await self._on_login(user)
