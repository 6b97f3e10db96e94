"""Domain errors raised by the stores and services.

Endpoints in ``orca.app.main`` translate these into HTTP responses; nothing
below the HTTP layer knows about status codes except ``UpstreamError``, which
carries the provider's own status when one was reported.
"""
from typing import Optional


class OrcaError(Exception):
    pass


class SessionNotFound(OrcaError):
    def __init__(self, session_id):
        super().__init__(f"Chat session {session_id} not found")
        self.session_id = session_id


class Forbidden(OrcaError):
    def __init__(self, session_id, caller_id):
        super().__init__(f"User {caller_id} does not own chat session {session_id}")
        self.session_id = session_id
        self.caller_id = caller_id


class UpstreamError(OrcaError):
    """The completion provider could not be reached, broke off, or sent an error frame."""

    def __init__(self, detail: str, status: Optional[int] = None):
        super().__init__(f"Upstream error ({status}): {detail}" if status else f"Upstream error: {detail}")
        self.detail = detail
        self.status = status


class CommitFailure(OrcaError):
    def __init__(self, session_id, cause: Exception):
        super().__init__(f"Could not commit assistant message for chat session {session_id}: {cause}")
        self.session_id = session_id
        self.cause = cause


class TurnInProgress(OrcaError):
    def __init__(self, session_id):
        super().__init__(f"Another chat turn is still streaming for chat session {session_id}")
        self.session_id = session_id


class DuplicateEmail(OrcaError):
    pass


class InvalidCredentials(OrcaError):
    pass


class EmailNotVerified(OrcaError):
    pass


class InvalidCode(OrcaError):
    pass


class ExpiredCode(OrcaError):
    pass


class Unauthenticated(OrcaError):
    pass
