"""
This module provides the local data store for the BreatheThrough application.

The store plays the role of a backend: it keeps the account table, the current session
and one health document per user. It is split in two layers:

- A `KeyValueBackend` holds raw JSON-compatible values under string keys. The durable
  implementation, `EncryptedFileBackend`, keeps everything in a single Fernet-encrypted
  JSON file (`records.json`). `MemoryBackend` keeps values in process memory.
- A `DataStore` exposes the account and document operations as coroutines, so that a
  network-backed store can replace `LocalDataStore` without changing any caller.

Documents are back-filled on read: whatever is stored is merged field by field over
the default document, so records written before a field existed still load with that
field present.
"""
# breathethrough/breathe/storage.py

import asyncio
import copy
import hashlib
import json
import logging
import os
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from cryptography.fernet import InvalidToken

from breathe.errors import DuplicateUser, InvalidCredentials, PersistenceFailure
from breathe.models import DEFAULT_SICKLE_CELL_TYPE, User, UserData, new_id

logger = logging.getLogger(__name__)

USERS_KEY = "breathethrough_users"
SESSION_KEY = "breathethrough_session"
DATA_PREFIX = "breathethrough_data_"


def data_key(user_id: str) -> str:
    """Returns the backend key of a user's health document."""
    return DATA_PREFIX + user_id


def session_key(session_id: Optional[str] = None) -> str:
    """Returns the backend key of the session owned by `session_id`."""
    return f"{SESSION_KEY}_{session_id}" if session_id else SESSION_KEY


def default_user_document() -> Dict[str, Any]:
    """Returns a fresh default health document."""
    return {
        "medications": [],
        "entries": [],
        "sickle_cell_type": DEFAULT_SICKLE_CELL_TYPE,
        "patient_info": {
            "doctor_name": "",
            "emergency_contact_name": "",
            "emergency_contact_phone": "",
            "blood_type": "",
        },
    }


def merge_with_defaults(defaults: Dict[str, Any], stored: Dict[str, Any]) -> Dict[str, Any]:
    """Deep-merges a stored document over its defaults.

    Every key of `defaults` is present in the result. Stored values win, including keys
    the defaults do not know about. Nested mappings are merged recursively; a stored
    value that is not a mapping where the default is one is replaced by the default.
    """
    merged = copy.deepcopy(defaults)
    for key, value in stored.items():
        default_value = defaults.get(key)
        if isinstance(default_value, dict):
            if isinstance(value, dict):
                merged[key] = merge_with_defaults(default_value, value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def _hash_password(salt: str, password: str) -> str:
    return hashlib.sha256((salt + password).encode()).hexdigest()


class KeyValueBackend(ABC):
    """Synchronous key-value persistence for JSON-compatible values."""

    @abstractmethod
    def get(self, key: str) -> Optional[Any]:
        """Returns a copy of the value stored under `key`, or None."""

    @abstractmethod
    def set(self, key: str, value: Any) -> None:
        """Stores `value` under `key`, replacing any previous value."""

    @abstractmethod
    def remove(self, key: str) -> None:
        """Deletes `key`. Removing a missing key is a no-op."""


class MemoryBackend(KeyValueBackend):
    """Keeps values in process memory. Used for throwaway stores."""

    def __init__(self, initial: Optional[Dict[str, Any]] = None):
        self._data = copy.deepcopy(initial) if initial else {}

    def get(self, key):
        return copy.deepcopy(self._data.get(key))

    def set(self, key, value):
        self._data[key] = copy.deepcopy(value)

    def remove(self, key):
        self._data.pop(key, None)


class EncryptedFileBackend(KeyValueBackend):
    """Keeps all keys in one JSON document encrypted with Fernet.

    Args:
        data_file (str): Path of the encrypted data file.
        encryptor: An object with `encrypt(bytes)` and `decrypt(bytes)`, normally a Fernet.
    """

    def __init__(self, data_file: str, encryptor):
        self.data_file = data_file
        self._encryptor = encryptor
        self._data = self._load_data()

    def _load_data(self) -> Dict[str, Any]:
        """Loads and decrypts the data file.

        Returns:
            dict: The stored keys, or an empty dictionary if the file is missing or corrupt.
        """
        try:
            with open(self.data_file, 'r') as f:
                encrypted_data = f.read()
            if not encrypted_data:
                return {}
            decrypted_data = self._encryptor.decrypt(encrypted_data.encode()).decode()
            data = json.loads(decrypted_data)
        except FileNotFoundError:
            return {}
        except (InvalidToken, json.JSONDecodeError, UnicodeDecodeError) as e:
            logger.warning("Could not load data file %s (%r). Starting with a new dataset.", self.data_file, e)
            return {}
        if not isinstance(data, dict):
            logger.warning("Data file %s does not hold a mapping. Starting with a new dataset.", self.data_file)
            return {}
        return data

    def _save_data(self, data: Dict[str, Any]) -> None:
        """Encrypts and writes `data` to the data file."""
        try:
            encrypted_data = self._encryptor.encrypt(json.dumps(data, indent=4).encode())
            with open(self.data_file, 'w') as f:
                f.write(encrypted_data.decode())
        except (OSError, TypeError, ValueError) as e:
            raise PersistenceFailure(f"Could not write {self.data_file}: {e}") from e

    def get(self, key):
        return copy.deepcopy(self._data.get(key))

    def set(self, key, value):
        data = dict(self._data)
        data[key] = copy.deepcopy(value)
        self._save_data(data)
        self._data = data

    def remove(self, key):
        if key not in self._data:
            return
        data = dict(self._data)
        del data[key]
        self._save_data(data)
        self._data = data


class DataStore(ABC):
    """Account, session and document operations. Every operation is a coroutine."""

    @abstractmethod
    async def register(self, email: str, password: str, name: str) -> User:
        """Creates an account with a default document and signs it in."""

    @abstractmethod
    async def login(self, email: str, password: str) -> User:
        """Signs in the account matching `email` and `password` exactly."""

    @abstractmethod
    async def logout(self) -> None:
        """Clears the stored session."""

    @abstractmethod
    async def get_current_user(self) -> Optional[User]:
        """Returns the signed-in user, if any."""

    @abstractmethod
    async def get_user_data(self, user_id: str) -> UserData:
        """Returns the user's document merged over the defaults. Never fails."""

    @abstractmethod
    async def save_user_data(self, user_id: str, data: UserData) -> None:
        """Overwrites the user's whole document."""


class LocalDataStore(DataStore):
    """A `DataStore` over a synchronous `KeyValueBackend`.

    The stored session belongs to one client. Stores created with `for_session` share
    the backend, accounts and documents, but each keeps its own session key, so a
    browser never resumes a sign-in made in another browser.

    Args:
        backend (KeyValueBackend): Where keys are persisted.
        latency (float): Seconds to wait in `register` and `login`, imitating a remote backend.
        session_id (str): Identifies the client whose session this store reads and writes.
            Without one the store uses the single unscoped session key.
    """

    def __init__(self, backend: KeyValueBackend, latency: float = 0.0, session_id: Optional[str] = None):
        self.backend = backend
        self.latency = latency
        self.session_id = session_id
        self.session_key = session_key(session_id)

    def for_session(self, session_id: str) -> 'LocalDataStore':
        """Returns a store over the same backend whose session is scoped to `session_id`."""
        if not session_id:
            raise ValueError("session_id is required")
        return LocalDataStore(self.backend, self.latency, session_id)

    def _users(self) -> List[Dict[str, Any]]:
        users = self.backend.get(USERS_KEY)
        return users if isinstance(users, list) else []

    def _set_session(self, user: User) -> None:
        self.backend.set(self.session_key, user.to_dict())

    async def register(self, email, password, name):
        if self.latency:
            await asyncio.sleep(self.latency)
        users = self._users()
        if any(row.get('email') == email for row in users):
            raise DuplicateUser(email)

        salt = os.urandom(16).hex()
        row = {
            'id': new_id(),
            'email': email,
            'name': name,
            'salt': salt,
            'password_hash': _hash_password(salt, password),
        }
        users.append(row)
        self.backend.set(USERS_KEY, users)
        self.backend.set(data_key(row['id']), default_user_document())

        user = User(id=row['id'], email=email, name=name)
        self._set_session(user)
        logger.info("Registered user %s", user.id)
        return user

    async def login(self, email, password):
        if self.latency:
            await asyncio.sleep(self.latency)
        for row in self._users():
            if row.get('email') != email:
                continue
            salt = row.get('salt')
            if salt is not None and row.get('password_hash') == _hash_password(salt, password):
                user = User(id=row['id'], email=row['email'], name=row.get('name', ''))
                self._set_session(user)
                return user
        raise InvalidCredentials()

    async def logout(self):
        self.backend.remove(self.session_key)

    async def get_current_user(self):
        session = self.backend.get(self.session_key)
        if not isinstance(session, dict):
            return None
        try:
            return User.from_dict(session)
        except KeyError:
            logger.warning("Ignoring malformed session record.")
            return None

    async def get_user_document(self, user_id: str) -> Dict[str, Any]:
        """Returns the raw stored document merged over the defaults."""
        stored = self.backend.get(data_key(user_id))
        if not isinstance(stored, dict):
            return default_user_document()
        return merge_with_defaults(default_user_document(), stored)

    async def get_user_data(self, user_id):
        document = await self.get_user_document(user_id)
        try:
            return UserData.from_dict(document)
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            logger.warning("Document for user %s is malformed (%r). Using defaults.", user_id, e)
            return UserData()

    async def save_user_data(self, user_id, data):
        self.backend.set(data_key(user_id), data.to_dict())
