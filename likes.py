"""
Like submission and match resolution.

Two clients may like each other at the same moment with nothing shared but the
store. Correctness rests on two unique keys enforced by the store:

- a Like is unique per (from, to, target_type, target_id), so a replayed
  submission is rejected and can never produce a second match attempt;
- a Match is unique per normalized pair (user_low, user_high), so when both
  sides detect reciprocity only one insert wins and the loser reads the row
  back. Both callers then report the same match id.

Reciprocity is keyed on the user pair alone: a like back on any prompt or on
the profile completes the match.
"""

import logging
from typing import Optional, Tuple

from profiles import display_name, get_profile, now_utc
from schemas import (
    ErrorCode,
    FeedResult,
    Like,
    LikeRequest,
    LikeResult,
    LikesResult,
    LikeView,
    Match,
    MatchesResult,
    MatchView,
    Profile,
    Result,
    failure,
)
from store import DESCENDING, AlreadyExists, Document, Inserted, PersistenceError, Store

logger = logging.getLogger(__name__)

MAX_LIKE_MESSAGE_LENGTH = 200
FEED_SCAN_LIMIT = 200

LIKE_KEY = ("from_user_id", "to_user_id", "target_type", "target_id")
PASS_KEY = ("from_user_id", "to_user_id")
MATCH_KEY = ("user_low", "user_high")
CONVERSATION_KEY = ("_id",)

NEWEST_FIRST = [("created_at", DESCENDING), ("_id", DESCENDING)]


def normalize_pair(user_a: str, user_b: str) -> Tuple[str, str]:
    return (user_a, user_b) if user_a < user_b else (user_b, user_a)


def other_user(user_ids, actor: str) -> str:
    return next(u for u in user_ids if u != actor)


async def submit_like(store: Store, actor: Optional[str], request: LikeRequest) -> LikeResult:
    if not actor:
        return failure(LikeResult, ErrorCode.UNAUTHENTICATED)
    if actor == request.to_user_id:
        return failure(LikeResult, ErrorCode.SELF_LIKE_REJECTED)
    message = (request.message or "").strip() or None
    if message and len(message) > MAX_LIKE_MESSAGE_LENGTH:
        return failure(LikeResult, ErrorCode.MESSAGE_TOO_LONG)

    like = {
        "from_user_id": actor,
        "to_user_id": request.to_user_id,
        "target_type": request.target_type,
        "target_id": request.target_id,
        "message": message,
        "created_at": now_utc(),
    }
    try:
        outcome = await store.insert_unique("like", like, LIKE_KEY)
        if isinstance(outcome, AlreadyExists):
            logger.info("like: duplicate %s -> %s on %s %s", actor, request.to_user_id, request.target_type, request.target_id)
            return failure(LikeResult, ErrorCode.DUPLICATE_LIKE)

        reciprocal = await store.find_one("like", {"from_user_id": request.to_user_id, "to_user_id": actor})
        if reciprocal is None:
            logger.info("like: %s -> %s recorded", actor, request.to_user_id)
            return LikeResult(matched=False)

        match = await resolve_match(store, actor, request.to_user_id)
    except PersistenceError:
        logger.warning("like: storage failure for %s -> %s", actor, request.to_user_id, exc_info=True)
        return failure(LikeResult, ErrorCode.PERSISTENCE_ERROR)
    return LikeResult(matched=True, match_id=match["_id"])


async def resolve_match(store: Store, user_a: str, user_b: str) -> Document:
    """Create the match for a pair, or return the one a concurrent caller created."""
    user_low, user_high = normalize_pair(user_a, user_b)
    row = {
        "user_low": user_low,
        "user_high": user_high,
        "user_ids": [user_low, user_high],
        "created_at": now_utc(),
    }
    outcome = await store.insert_unique("match", row, MATCH_KEY)
    if isinstance(outcome, Inserted):
        match = outcome.doc
        logger.info("match: created %s for %s/%s", match["_id"], user_low, user_high, extra={"match_id": match["_id"]})
    else:
        match = await store.find_one("match", {"user_low": user_low, "user_high": user_high})
        if match is None:
            raise PersistenceError(f"match for {user_low}/{user_high} conflicted but cannot be read back")
        logger.info("match: %s already created for %s/%s", match["_id"], user_low, user_high, extra={"match_id": match["_id"]})
    try:
        await ensure_conversation(store, match)
    except PersistenceError:
        # the match is committed; the gate recreates the conversation on first access
        logger.warning("match: conversation for %s not written", match["_id"], exc_info=True)
    return match


async def ensure_conversation(store: Store, match: Document) -> Document:
    """Conversation of a match; it shares the match id and is created at most once."""
    row = {
        "_id": match["_id"],
        "match_id": match["_id"],
        "participants": list(match["user_ids"]),
        "match_created_at": match["created_at"],
        "last_activity": match["created_at"],
        "last_message_content": None,
        "last_sender_id": None,
    }
    outcome = await store.insert_unique("conversation", row, CONVERSATION_KEY)
    if isinstance(outcome, Inserted):
        return outcome.doc
    conversation = await store.find_one("conversation", {"_id": match["_id"]})
    if conversation is None:
        raise PersistenceError(f"conversation {match['_id']} conflicted but cannot be read back")
    return conversation


async def pass_user(store: Store, actor: Optional[str], target_user_id: str) -> Result:
    """Record "not interested". Never touches likes, so it cannot affect matching."""
    if not actor:
        return failure(Result, ErrorCode.UNAUTHENTICATED)
    if actor == target_user_id:
        return failure(Result, ErrorCode.SELF_LIKE_REJECTED)
    row = {"from_user_id": actor, "to_user_id": target_user_id, "created_at": now_utc()}
    try:
        # a repeated pass keeps the first row
        await store.insert_unique("pass", row, PASS_KEY)
    except PersistenceError:
        logger.warning("pass: storage failure for %s -> %s", actor, target_user_id, exc_info=True)
        return failure(Result, ErrorCode.PERSISTENCE_ERROR)
    return Result()


async def _like_views(store: Store, docs, counterpart_field: str):
    views = []
    for doc in docs:
        other_id = doc[counterpart_field]
        views.append(LikeView(like=Like.model_validate(doc), other_user_id=other_id, other_user_name=await display_name(store, other_id)))
    return views


async def incoming_likes(store: Store, actor: Optional[str]) -> LikesResult:
    if not actor:
        return failure(LikesResult, ErrorCode.UNAUTHENTICATED)
    try:
        docs = await store.list_all("like", {"to_user_id": actor}, sort=NEWEST_FIRST)
        return LikesResult(likes=await _like_views(store, docs, "from_user_id"))
    except PersistenceError:
        logger.warning("likes: incoming listing failed for %s", actor, exc_info=True)
        return failure(LikesResult, ErrorCode.PERSISTENCE_ERROR)


async def outgoing_likes(store: Store, actor: Optional[str]) -> LikesResult:
    if not actor:
        return failure(LikesResult, ErrorCode.UNAUTHENTICATED)
    try:
        docs = await store.list_all("like", {"from_user_id": actor}, sort=NEWEST_FIRST)
        return LikesResult(likes=await _like_views(store, docs, "to_user_id"))
    except PersistenceError:
        logger.warning("likes: outgoing listing failed for %s", actor, exc_info=True)
        return failure(LikesResult, ErrorCode.PERSISTENCE_ERROR)


async def list_matches(store: Store, actor: Optional[str]) -> MatchesResult:
    if not actor:
        return failure(MatchesResult, ErrorCode.UNAUTHENTICATED)
    try:
        views = []
        for doc in await store.list_all("match", {"user_ids": actor}, sort=NEWEST_FIRST):
            other_id = other_user(doc["user_ids"], actor)
            views.append(MatchView(match=Match.model_validate(doc), other_user_id=other_id, other_profile=await get_profile(store, other_id)))
    except PersistenceError:
        logger.warning("matches: listing failed for %s", actor, exc_info=True)
        return failure(MatchesResult, ErrorCode.PERSISTENCE_ERROR)
    return MatchesResult(matches=views)


async def discover(store: Store, actor: Optional[str], limit: int = 20) -> FeedResult:
    """Profiles the actor has neither liked nor passed, excluding their own."""
    if not actor:
        return failure(FeedResult, ErrorCode.UNAUTHENTICATED)
    try:
        seen = {d["to_user_id"] for d in await store.list_all("like", {"from_user_id": actor})}
        seen.update(d["to_user_id"] for d in await store.list_all("pass", {"from_user_id": actor}))
        candidates = []
        for doc in await store.list_all("profile", {}, limit=FEED_SCAN_LIMIT):
            uid = doc["_id"]
            if uid == actor or uid in seen:
                continue
            candidates.append(Profile.model_validate(doc))
            if len(candidates) >= limit:
                break
    except PersistenceError:
        logger.warning("feed: listing failed for %s", actor, exc_info=True)
        return failure(FeedResult, ErrorCode.PERSISTENCE_ERROR)
    return FeedResult(profiles=candidates)
