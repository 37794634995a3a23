"""
Error taxonomy for Squad Chat

Every failure a participant can run into maps to one of these classes. The
session layer turns them into banner or notice text; none of them is fatal
to the process.
"""

from typing import Optional


class ChatError(Exception):
    """Base exception for chat operations"""

    default_message = "Something went wrong"

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.default_message)

    @property
    def user_message(self) -> str:
        return str(self)


class RemoteUnavailable(ChatError):
    """Backend unreachable or misconfigured (e.g. schema not initialized)"""

    default_message = "The chat backend is unavailable"


class NotFound(ChatError):
    """Invite code or room does not exist"""

    default_message = "No room matches that invite code"


class CodeCollision(ChatError):
    """Remote rejected a new room because its invite code is taken"""

    default_message = "That invite code is already in use, please try again"


class ValidationFailure(ChatError, ValueError):
    """Blank name, room name, code or message submitted"""

    default_message = "This field cannot be empty"


class SendFailure(ChatError):
    """Message insert rejected by the remote"""

    default_message = "Message could not be sent"


class InvalidTransition(ChatError):
    """Operation issued from a screen that does not allow it"""

    default_message = "That action is not available here"
