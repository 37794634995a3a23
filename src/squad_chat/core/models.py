"""
Data model for Squad Chat

This module defines the participant, room and message records exchanged
between the local session and the remote chat backend.
"""

from datetime import datetime, timezone
from typing import Any, Dict
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator


def utc_now() -> datetime:
    """Current time as an aware UTC datetime"""
    return datetime.now(timezone.utc)


class Participant(BaseModel):
    """
    Anonymous participant identity for this device

    The id is generated once and never changes; the display name is
    user-editable and empty until the participant picks one.
    """

    participant_id: UUID = Field(..., description="Stable random identifier")
    display_name: str = Field("", description="Name shown next to messages")

    @property
    def named(self) -> bool:
        """Check whether a display name has been chosen"""
        return bool(self.display_name.strip())


class Room(BaseModel):
    """A chat room as returned by the remote and cached locally"""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="Remote room identifier")
    name: str = Field(..., description="Human readable room name")
    invite_code: str = Field(..., description="Shareable six character code")

    @field_validator('invite_code')
    @classmethod
    def normalize_invite_code(cls, v):
        """Invite codes are always stored and shown in lowercase"""
        return v.strip().lower()

    def to_cache_entry(self) -> Dict[str, str]:
        """Shape stored in the local room cache"""
        return {'id': self.id, 'name': self.name, 'invite_code': self.invite_code}


class MessageDraft(BaseModel):
    """A message as submitted by its sender, before the remote assigns an id"""

    room_id: str = Field(..., description="Room the message belongs to")
    content: str = Field(..., description="Message text")
    sender_name: str = Field(..., description="Display name at send time")
    sender_id: UUID = Field(..., description="Sender participant id")
    created_at: datetime = Field(default_factory=utc_now, description="Send time (UTC)")

    @field_validator('created_at')
    @classmethod
    def ensure_utc(cls, v):
        """Naive timestamps are taken to be UTC"""
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v.astimezone(timezone.utc)


class Message(MessageDraft):
    """
    A stored message

    The id is assigned by the remote store and is the only key used to
    recognise the same message arriving twice.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="Identity assigned by the remote store")

    @classmethod
    def from_draft(cls, draft: MessageDraft, message_id: str) -> 'Message':
        """Attach a remote-assigned id to a draft"""
        return cls(id=message_id, **draft.model_dump(exclude={'id'}))

    def to_jsonl_line(self) -> str:
        """Convert message to JSONL line (JSON + newline)"""
        return self.model_dump_json() + "\n"

    @classmethod
    def from_jsonl_line(cls, line: str) -> 'Message':
        """Create message from JSONL line"""
        return cls.model_validate_json(line.strip())

    def is_from(self, participant: Participant) -> bool:
        """Check if the given participant sent this message"""
        return self.sender_id == participant.participant_id


def room_from_cache_entry(entry: Dict[str, Any]) -> Room:
    """Rebuild a room from its cached `{id, name, invite_code}` shape"""
    return Room.model_validate(entry)
