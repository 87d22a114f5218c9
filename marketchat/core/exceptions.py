"""
Domain errors for the chat service.

Each error knows the HTTP status and the client-visible `error` string it
maps to. REST handlers turn them into `{success: false, error, message?}`
envelopes; the live channel turns send failures into `message:error` events.
"""
from typing import Optional


class ChatError(Exception):
    status_code = 500
    error = "Something went wrong!"
    # wording for `message:error` when live clients expect different text
    live_error: Optional[str] = None

    def __init__(self, error: Optional[str] = None, message: Optional[str] = None) -> None:
        self.error = error or self.error
        self.message = message
        super().__init__(self.error)

    def live_message(self) -> str:
        return self.live_error or self.error

    def to_envelope(self) -> dict:
        body = {"success": False, "error": self.error}
        if self.message:
            body["message"] = self.message
        return body


# Authentication

class Unauthenticated(ChatError):
    status_code = 401
    error = "No token provided"


class InvalidCredential(ChatError):
    status_code = 401
    error = "Invalid token"


class UnknownSubject(ChatError):
    status_code = 404
    error = "User not found. Please log in again."


# Not found

class ConversationNotFound(ChatError):
    status_code = 404
    error = "Conversation not found"


class MessageNotFound(ChatError):
    status_code = 404
    error = "Message not found"


class ParticipantNotFound(ChatError):
    status_code = 404
    error = "Participant not found"


# Authorization

class NotAParticipant(ChatError):
    status_code = 403
    error = "You are not part of this conversation"
    live_error = "Not authorized for this conversation"


# Validation

class EmptyContent(ChatError):
    status_code = 400
    error = "Message content is required"


class SelfConversation(ChatError):
    status_code = 400
    error = "You cannot start a conversation with yourself"


class InvalidParticipant(ChatError):
    status_code = 400
    error = "Valid participantId is required"


class InvalidConversationId(ChatError):
    status_code = 400
    error = "Invalid conversation ID"


class InvalidCursor(ChatError):
    status_code = 400
    error = "Invalid cursor"


# Infrastructure

class StoreFailure(ChatError):
    status_code = 500
    error = "Failed to process request"
