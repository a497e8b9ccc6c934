import logging
import os
from typing import Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Query, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware

import conversations
import likes
import profiles
from database import get_mongo_store
from schemas import (
    ConversationsResult,
    ErrorCode,
    FeedResult,
    LikeRequest,
    LikeResult,
    LikesResult,
    MatchesResult,
    Message,
    MessageResult,
    MessagesResult,
    PassRequest,
    PetCreate,
    PetResult,
    PetsResult,
    PetUpdate,
    ProfileCardResult,
    ProfileResult,
    ProfileUpdate,
    ReadResult,
    Result,
    SendMessageBody,
    Session,
)
from store import PersistenceError, Store

logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO").upper())
logger = logging.getLogger(__name__)

app = FastAPI(title="PawMatch API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

STATUS_CODES = {
    ErrorCode.UNAUTHENTICATED: 401,
    ErrorCode.FORBIDDEN: 403,
    ErrorCode.NOT_FOUND: 404,
    ErrorCode.DUPLICATE_LIKE: 409,
    ErrorCode.SELF_LIKE_REJECTED: 400,
    ErrorCode.MESSAGE_TOO_LONG: 400,
    ErrorCode.EMPTY_MESSAGE: 400,
    ErrorCode.INCOMPLETE_PROFILE: 400,
    ErrorCode.PERSISTENCE_ERROR: 503,
}

# ----------------------- Utilities -----------------------


def get_store() -> Store:
    return get_mongo_store()


def unwrap(result):
    if not result.ok:
        raise HTTPException(status_code=STATUS_CODES[result.error], detail=result.error.value)
    return result

# ----------------------- Auth -----------------------


async def resolve_actor(store: Store, token: Optional[str]) -> Optional[str]:
    """User id behind a session token, or None when there is no live session."""
    if not token:
        return None
    doc = await store.find_one("session", {"token": token})
    if not doc:
        return None
    session = Session.model_validate(doc)
    if session.expires_at and session.expires_at < profiles.now_utc():
        return None
    return session.user_id


async def get_actor_id(authorization: Optional[str] = Header(None), store: Store = Depends(get_store)) -> Optional[str]:
    if not authorization or not authorization.lower().startswith("bearer "):
        return None
    token = authorization.split(" ", 1)[1].strip()
    try:
        return await resolve_actor(store, token)
    except PersistenceError:
        logger.warning("auth: session lookup failed", exc_info=True)
        raise HTTPException(status_code=503, detail=ErrorCode.PERSISTENCE_ERROR.value)

# ----------------------- Profiles & Pets -----------------------


@app.get("/profiles/me", response_model=ProfileResult)
async def get_me(actor=Depends(get_actor_id), store: Store = Depends(get_store)):
    return unwrap(await profiles.get_my_profile(store, actor))


@app.put("/profiles/me", response_model=ProfileResult)
async def update_me(body: ProfileUpdate, actor=Depends(get_actor_id), store: Store = Depends(get_store)):
    return unwrap(await profiles.update_my_profile(store, actor, body))


@app.get("/profiles/me/pets", response_model=PetsResult)
async def list_my_pets(actor=Depends(get_actor_id), store: Store = Depends(get_store)):
    return unwrap(await profiles.list_pets(store, actor))


@app.post("/profiles/me/pets", response_model=PetResult)
async def add_pet(body: PetCreate, actor=Depends(get_actor_id), store: Store = Depends(get_store)):
    return unwrap(await profiles.add_pet(store, actor, body))


@app.put("/profiles/me/pets/{pet_id}", response_model=PetResult)
async def update_pet(pet_id: str, body: PetUpdate, actor=Depends(get_actor_id), store: Store = Depends(get_store)):
    return unwrap(await profiles.update_pet(store, actor, pet_id, body))


@app.get("/profiles/{user_id}", response_model=ProfileCardResult)
async def get_profile_card(user_id: str, actor=Depends(get_actor_id), store: Store = Depends(get_store)):
    return unwrap(await profiles.get_profile_card(store, actor, user_id))

# ----------------------- Likes & Matches -----------------------


@app.post("/likes", response_model=LikeResult)
async def submit_like(body: LikeRequest, actor=Depends(get_actor_id), store: Store = Depends(get_store)):
    return unwrap(await likes.submit_like(store, actor, body))


@app.post("/passes", response_model=Result)
async def pass_user(body: PassRequest, actor=Depends(get_actor_id), store: Store = Depends(get_store)):
    return unwrap(await likes.pass_user(store, actor, body.target_user_id))


@app.get("/likes/incoming", response_model=LikesResult)
async def incoming_likes(actor=Depends(get_actor_id), store: Store = Depends(get_store)):
    return unwrap(await likes.incoming_likes(store, actor))


@app.get("/likes/outgoing", response_model=LikesResult)
async def outgoing_likes(actor=Depends(get_actor_id), store: Store = Depends(get_store)):
    return unwrap(await likes.outgoing_likes(store, actor))


@app.get("/matches", response_model=MatchesResult)
async def list_matches(actor=Depends(get_actor_id), store: Store = Depends(get_store)):
    return unwrap(await likes.list_matches(store, actor))


@app.get("/feed", response_model=FeedResult)
async def get_feed(limit: int = Query(20, ge=1, le=50), actor=Depends(get_actor_id), store: Store = Depends(get_store)):
    return unwrap(await likes.discover(store, actor, limit))

# ----------------------- Conversations -----------------------


@app.get("/conversations", response_model=ConversationsResult)
async def list_conversations(actor=Depends(get_actor_id), store: Store = Depends(get_store)):
    return unwrap(await conversations.list_conversations(store, actor))


@app.get("/conversations/{conversation_id}/messages", response_model=MessagesResult)
async def get_messages(conversation_id: str, actor=Depends(get_actor_id), store: Store = Depends(get_store)):
    return unwrap(await conversations.list_messages(store, actor, conversation_id))


@app.post("/conversations/{conversation_id}/messages", response_model=MessageResult)
async def send_message(conversation_id: str, body: SendMessageBody, actor=Depends(get_actor_id), store: Store = Depends(get_store)):
    return unwrap(await conversations.send_message(store, actor, conversation_id, body.content))


@app.post("/conversations/{conversation_id}/read", response_model=ReadResult)
async def mark_read(conversation_id: str, actor=Depends(get_actor_id), store: Store = Depends(get_store)):
    return unwrap(await conversations.mark_read(store, actor, conversation_id))


@app.websocket("/conversations/{conversation_id}/ws")
async def conversation_socket(websocket: WebSocket, conversation_id: str, token: Optional[str] = None, store: Store = Depends(get_store)):
    try:
        actor = await resolve_actor(store, token)
    except PersistenceError:
        await websocket.close(code=1011)
        return
    opened = await conversations.get_conversation(store, actor, conversation_id)
    if not opened.ok:
        logger.info("realtime: refused %s on %s (%s)", actor, conversation_id, opened.error.value)
        await websocket.close(code=1008)
        return

    await websocket.accept()

    async def push(message: Message) -> None:
        await websocket.send_text(message.model_dump_json())

    try:
        subscription = await conversations.subscribe(store, conversation_id, push)
    except PersistenceError:
        logger.warning("realtime: subscribe failed on %s", conversation_id, exc_info=True)
        await websocket.close(code=1011)
        return
    async with subscription:
        try:
            await websocket.send_json({"type": "ack", "message": "connected"})
            while True:
                # inbound frames are ignored; sending goes through POST
                await websocket.receive_text()
        except WebSocketDisconnect:
            logger.debug("realtime: %s left %s", actor, conversation_id)

# ----------------------- Health -----------------------


@app.get("/")
def read_root():
    return {"message": "PawMatch API running"}


@app.get("/test")
async def test_database(store: Store = Depends(get_store)):
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": None,
        "database_name": None,
    }
    if await store.ping():
        response["database"] = "✅ Connected & Working"
    response["database_url"] = "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set"
    response["database_name"] = "✅ Set" if os.getenv("DATABASE_NAME") else "❌ Not Set"
    return response


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
