"""SQLAlchemy models package."""

from buddy.models.user import User, UserRole, UserStatus
from buddy.models.session import UserSession
from buddy.models.thread import Thread
from buddy.models.message import Message, MessageRole
from buddy.models.companion import CompanionProfile
from buddy.models.relationship import RelationshipState
from buddy.models.memory import MemoryEvent, MemoryProfile
from buddy.models.invite import Invite, InviteStatus

__all__ = [
    "User",
    "UserRole",
    "UserStatus",
    "UserSession",
    "Thread",
    "Message",
    "MessageRole",
    "CompanionProfile",
    "RelationshipState",
    "MemoryProfile",
    "MemoryEvent",
    "Invite",
    "InviteStatus",
]
