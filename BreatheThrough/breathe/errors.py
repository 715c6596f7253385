"""
Error types raised by the BreatheThrough services.

Authentication errors are shown to the patient as form errors. Every other error is
recovered from inside the service layer: it is logged and the application continues
in a degraded but usable state.
"""
# breathethrough/breathe/errors.py


class BreatheError(Exception):
    """Base class for all application errors."""


class DuplicateUser(BreatheError):
    """Raised when registering an email that already has an account."""

    def __init__(self, email: str):
        super().__init__("User already exists")
        self.email = email


class InvalidCredentials(BreatheError):
    """Raised when no account matches the given email and password."""

    def __init__(self):
        super().__init__("Invalid credentials")


class RegistrationError(BreatheError):
    """Raised when the sign-up form is incomplete."""


class PersistenceFailure(BreatheError):
    """Raised by the data store when a document cannot be written or read back."""


class ProtocolParseFailure(BreatheError):
    """Raised when a triage status header is present but cannot be decoded."""


class CapabilityUnavailable(BreatheError):
    """Raised when an external AI capability cannot be reached or returns an error."""
