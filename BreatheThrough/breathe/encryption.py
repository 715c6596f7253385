"""
This module handles the encryption key for the application's data file.

It uses the `cryptography` library (Fernet symmetric encryption) so the patient's
journal, medications and account table are never written to disk in clear text.
The key lives in a separate file (`secret.key` by default) that is generated on
first use. Keep that file out of version control: losing it makes the data file
unreadable, and the store will then start over with an empty dataset.
"""
# breathethrough/breathe/encryption.py

import logging

from cryptography.fernet import Fernet

logger = logging.getLogger(__name__)


def write_key(key_file: str) -> bytes:
    """Generates a new Fernet key and saves it to `key_file`.

    Returns:
        bytes: The newly written key.
    """
    key = Fernet.generate_key()
    with open(key_file, "wb") as f:
        f.write(key)
    return key


def load_key(key_file: str) -> bytes:
    """Loads the Fernet key from `key_file`.

    Raises:
        FileNotFoundError: If the key file does not exist yet.
    """
    with open(key_file, "rb") as f:
        return f.read().strip()


def load_or_create_encryptor(key_file: str) -> Fernet:
    """Returns a Fernet instance for `key_file`, generating the key on first run."""
    try:
        key = load_key(key_file)
    except FileNotFoundError:
        logger.info("Encryption key %s not found. Generating a new one.", key_file)
        key = write_key(key_file)
    return Fernet(key)
