"""
Conversation gate: chat between the two users of a match.

A conversation shares its id with its match and lists the two users as
participants. Every read and write checks that the actor is one of them.
"""

import logging
from typing import Optional, Tuple

from likes import ensure_conversation, other_user
from profiles import display_name, now_utc
from schemas import (
    Conversation,
    ConversationResult,
    ConversationsResult,
    ConversationView,
    ErrorCode,
    Message,
    MessageResult,
    MessagesResult,
    ReadResult,
    failure,
)
from store import ASCENDING, Document, InsertCallback, PersistenceError, Store, Subscription, deliver

logger = logging.getLogger(__name__)

MAX_MESSAGE_LENGTH = 1000

OLDEST_FIRST = [("created_at", ASCENDING), ("_id", ASCENDING)]


async def _load(store: Store, actor: str, conversation_id: str) -> Tuple[Optional[Document], Optional[ErrorCode]]:
    conversation = await store.find_one("conversation", {"_id": conversation_id})
    if conversation is None:
        match = await store.find_one("match", {"_id": conversation_id})
        if match is None:
            return None, ErrorCode.NOT_FOUND
        conversation = await ensure_conversation(store, match)
    if actor not in conversation["participants"]:
        return None, ErrorCode.FORBIDDEN
    return conversation, None


async def get_conversation(store: Store, actor: Optional[str], conversation_id: str) -> ConversationResult:
    if not actor:
        return failure(ConversationResult, ErrorCode.UNAUTHENTICATED)
    try:
        conversation, error = await _load(store, actor, conversation_id)
    except PersistenceError:
        logger.warning("conversation: lookup of %s failed", conversation_id, exc_info=True)
        return failure(ConversationResult, ErrorCode.PERSISTENCE_ERROR)
    if error:
        return failure(ConversationResult, error)
    return ConversationResult(conversation=Conversation.model_validate(conversation))


async def list_conversations(store: Store, actor: Optional[str]) -> ConversationsResult:
    """Conversations of the actor, most recent activity first, with unread counts."""
    if not actor:
        return failure(ConversationsResult, ErrorCode.UNAUTHENTICATED)
    try:
        found = {c["_id"]: c for c in await store.list_all("conversation", {"participants": actor})}
        # matches whose conversation row was never written get it now
        for match in await store.list_all("match", {"user_ids": actor}):
            if match["_id"] not in found:
                found[match["_id"]] = await ensure_conversation(store, match)

        views = []
        for conv in sorted(found.values(), key=lambda c: c["last_activity"], reverse=True):
            other_id = other_user(conv["participants"], actor)
            unread = await store.count("message", {"conversation_id": conv["_id"], "recipient_id": actor, "is_read": False})
            views.append(
                ConversationView(
                    conversation_id=conv["_id"],
                    other_user_id=other_id,
                    other_user_name=await display_name(store, other_id),
                    match_created_at=conv["match_created_at"],
                    last_activity=conv["last_activity"],
                    last_message_content=conv.get("last_message_content"),
                    last_sender_id=conv.get("last_sender_id"),
                    unread_count=unread,
                )
            )
    except PersistenceError:
        logger.warning("conversations: listing failed for %s", actor, exc_info=True)
        return failure(ConversationsResult, ErrorCode.PERSISTENCE_ERROR)
    return ConversationsResult(conversations=views)


async def list_messages(store: Store, actor: Optional[str], conversation_id: str) -> MessagesResult:
    if not actor:
        return failure(MessagesResult, ErrorCode.UNAUTHENTICATED)
    try:
        _, error = await _load(store, actor, conversation_id)
        if error:
            return failure(MessagesResult, error)
        docs = await store.list_all("message", {"conversation_id": conversation_id}, sort=OLDEST_FIRST)
    except PersistenceError:
        logger.warning("messages: listing of %s failed", conversation_id, exc_info=True)
        return failure(MessagesResult, ErrorCode.PERSISTENCE_ERROR)
    return MessagesResult(messages=[Message.model_validate(d) for d in docs])


async def send_message(store: Store, actor: Optional[str], conversation_id: str, content: str) -> MessageResult:
    if not actor:
        return failure(MessageResult, ErrorCode.UNAUTHENTICATED)
    content = (content or "").strip()
    if not content:
        return failure(MessageResult, ErrorCode.EMPTY_MESSAGE)
    if len(content) > MAX_MESSAGE_LENGTH:
        return failure(MessageResult, ErrorCode.MESSAGE_TOO_LONG)

    try:
        conversation, error = await _load(store, actor, conversation_id)
        if error:
            logger.info("messages: %s rejected on %s (%s)", actor, conversation_id, error.value)
            return failure(MessageResult, error)
        now = now_utc()
        saved = await store.insert(
            "message",
            {
                "conversation_id": conversation_id,
                "sender_id": actor,
                "recipient_id": other_user(conversation["participants"], actor),
                "content": content,
                "is_read": False,
                "created_at": now,
                "updated_at": now,
            },
        )
        await store.update_where(
            "conversation",
            {"_id": conversation_id},
            {"last_activity": now, "last_message_content": content, "last_sender_id": actor},
        )
    except PersistenceError:
        logger.warning("messages: send by %s on %s failed", actor, conversation_id, exc_info=True)
        return failure(MessageResult, ErrorCode.PERSISTENCE_ERROR)
    return MessageResult(message=Message.model_validate(saved))


async def mark_read(store: Store, actor: Optional[str], conversation_id: str) -> ReadResult:
    """Mark every message addressed to the actor as read. Repeating it changes nothing."""
    if not actor:
        return failure(ReadResult, ErrorCode.UNAUTHENTICATED)
    try:
        _, error = await _load(store, actor, conversation_id)
        if error:
            return failure(ReadResult, error)
        updated = await store.update_where(
            "message",
            {"conversation_id": conversation_id, "recipient_id": actor, "is_read": False},
            {"is_read": True, "updated_at": now_utc()},
        )
    except PersistenceError:
        logger.warning("messages: mark read by %s on %s failed", actor, conversation_id, exc_info=True)
        return failure(ReadResult, ErrorCode.PERSISTENCE_ERROR)
    return ReadResult(updated=updated)


async def subscribe(store: Store, conversation_id: str, on_message: InsertCallback) -> Subscription:
    """Deliver each new message of the conversation to ``on_message`` in insertion order.

    Authorize with :func:`get_conversation` first. Raises PersistenceError when
    the underlying channel cannot be opened.
    """

    async def forward(doc: Document) -> None:
        await deliver(on_message, Message.model_validate(doc))

    return await store.subscribe_inserts("message", {"conversation_id": conversation_id}, forward)
