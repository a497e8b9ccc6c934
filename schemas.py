"""
Database Schemas for the PawMatch (pet-inclusive) Dating App

Stored pydantic models map to MongoDB collections. The collection name is
the lowercase of the class name.

Key collections:
- Profile: display identity of a user, keyed by user id
- Pet: pets owned by a user (owner_id)
- Session: bearer tokens issued by the auth provider
- Like: directed like on a prompt or profile, unique per (from, to, type, target)
- Pass: "not interested" decision, unique per (from, to)
- Match: mutual likes, one row per unordered user pair (user_low < user_high)
- Conversation: chat thread of a match, same id as the match
- Message: chat messages between matched users

The second half holds request bodies and the result objects every core
operation returns instead of raising.
"""

from datetime import datetime
from enum import Enum
from typing import List, Literal, Optional

from pydantic import AliasChoices, BaseModel, Field

TargetType = Literal["prompt", "profile"]


class StoredModel(BaseModel):
    # stored rows carry "_id"; API payloads expose "id"
    id: str = Field(..., validation_alias=AliasChoices("_id", "id"))


# Profiles, pets & auth
# Read models take stored rows as they are; bounds live on the write models below.
class Profile(StoredModel):
    display_name: str
    age: Optional[int] = None
    bio: Optional[str] = None
    photos: List[str] = Field(default_factory=list)
    updated_at: Optional[datetime] = None


class Pet(StoredModel):
    owner_id: str
    name: str
    age: Optional[int] = None
    weight: Optional[str] = None
    breed: Optional[str] = None
    bio: Optional[str] = None
    photos: List[str] = Field(default_factory=list)


class Session(BaseModel):
    user_id: str
    token: str
    expires_at: Optional[datetime] = None


# Swipes
class Like(StoredModel):
    from_user_id: str
    to_user_id: str
    target_type: TargetType
    target_id: str
    message: Optional[str] = None
    created_at: datetime


# Matches & messaging
class Match(StoredModel):
    user_low: str
    user_high: str
    user_ids: List[str]
    created_at: datetime


class Conversation(StoredModel):
    match_id: str
    participants: List[str]
    match_created_at: datetime
    last_activity: datetime
    last_message_content: Optional[str] = None
    last_sender_id: Optional[str] = None


class Message(StoredModel):
    conversation_id: str
    sender_id: str
    recipient_id: str
    content: str
    is_read: bool = False
    created_at: datetime
    updated_at: datetime


# ----------------------- Requests -----------------------
class LikeRequest(BaseModel):
    to_user_id: str
    target_type: TargetType = "prompt"
    target_id: str
    message: Optional[str] = None


class PassRequest(BaseModel):
    target_user_id: str


class SendMessageBody(BaseModel):
    content: str


class ProfileUpdate(BaseModel):
    display_name: Optional[str] = Field(None, min_length=1, max_length=60)
    age: Optional[int] = Field(None, ge=18, le=120)
    bio: Optional[str] = Field(None, max_length=500)
    photos: Optional[List[str]] = None


class PetCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=60)
    age: Optional[int] = Field(None, ge=0, le=40)
    weight: Optional[str] = Field(None, max_length=30)
    breed: Optional[str] = Field(None, max_length=60)
    bio: Optional[str] = Field(None, max_length=500)
    photos: List[str] = Field(default_factory=list)


class PetUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=60)
    age: Optional[int] = Field(None, ge=0, le=40)
    weight: Optional[str] = Field(None, max_length=30)
    breed: Optional[str] = Field(None, max_length=60)
    bio: Optional[str] = Field(None, max_length=500)
    photos: Optional[List[str]] = None


# ----------------------- Results -----------------------
class ErrorCode(str, Enum):
    UNAUTHENTICATED = "Unauthenticated"
    SELF_LIKE_REJECTED = "SelfLikeRejected"
    DUPLICATE_LIKE = "DuplicateLike"
    MESSAGE_TOO_LONG = "MessageTooLong"
    EMPTY_MESSAGE = "EmptyMessage"
    FORBIDDEN = "Forbidden"
    NOT_FOUND = "NotFound"
    INCOMPLETE_PROFILE = "IncompleteProfile"
    PERSISTENCE_ERROR = "PersistenceError"


class Result(BaseModel):
    ok: bool = True
    error: Optional[ErrorCode] = None


class ProfileResult(Result):
    profile: Optional[Profile] = None


class ProfileCardResult(Result):
    profile: Optional[Profile] = None
    pets: List[Pet] = Field(default_factory=list)


class PetResult(Result):
    pet: Optional[Pet] = None


class PetsResult(Result):
    pets: List[Pet] = Field(default_factory=list)


class LikeResult(Result):
    matched: bool = False
    match_id: Optional[str] = None


class LikeView(BaseModel):
    like: Like
    other_user_id: str
    other_user_name: str


class LikesResult(Result):
    likes: List[LikeView] = Field(default_factory=list)


class MatchView(BaseModel):
    match: Match
    other_user_id: str
    other_profile: Optional[Profile] = None


class MatchesResult(Result):
    matches: List[MatchView] = Field(default_factory=list)


class FeedResult(Result):
    profiles: List[Profile] = Field(default_factory=list)


class ConversationView(BaseModel):
    conversation_id: str
    other_user_id: str
    other_user_name: str
    match_created_at: datetime
    last_activity: datetime
    last_message_content: Optional[str] = None
    last_sender_id: Optional[str] = None
    unread_count: int = 0


class ConversationResult(Result):
    conversation: Optional[Conversation] = None


class ConversationsResult(Result):
    conversations: List[ConversationView] = Field(default_factory=list)


class MessageResult(Result):
    message: Optional[Message] = None


class MessagesResult(Result):
    messages: List[Message] = Field(default_factory=list)


class ReadResult(Result):
    updated: int = 0


def failure(result_cls, error: ErrorCode, **fields):
    return result_cls(ok=False, error=error, **fields)
