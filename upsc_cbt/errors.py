"""
errors.py

Exception taxonomy for the test session engine and its collaborators.
Input validation failures are plain ValueError (pydantic's ValidationError included).
"""


class CBTError(Exception):
    """Base class for all domain errors."""


class SessionStartError(CBTError):
    """No questions to sit, identity unresolved, or the session row could not be created."""


class PersistenceError(CBTError):
    """A create/update/list call against the persistence backend failed."""


class PolicyViolation(CBTError):
    """An operation was attempted in a lifecycle state that does not allow it."""


class AIFeedbackError(CBTError):
    """The LLM endpoint failed or returned nothing usable."""
