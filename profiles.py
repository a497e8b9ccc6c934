"""
Profiles and pets.

A profile is keyed by its user id and created by the first update that names
the user. Pets belong to one owner; only the owner edits them.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from schemas import (
    ErrorCode,
    Pet,
    PetCreate,
    PetResult,
    PetsResult,
    PetUpdate,
    Profile,
    ProfileCardResult,
    ProfileResult,
    ProfileUpdate,
    failure,
)
from store import ASCENDING, Inserted, PersistenceError, Store

logger = logging.getLogger(__name__)

UNKNOWN_USER = "Unknown User"


def now_utc():
    return datetime.now(timezone.utc)


async def get_profile(store: Store, user_id: str) -> Optional[Profile]:
    doc = await store.find_one("profile", {"_id": user_id})
    return Profile.model_validate(doc) if doc else None


async def display_name(store: Store, user_id: str) -> str:
    profile = await get_profile(store, user_id)
    return profile.display_name if profile else UNKNOWN_USER


async def get_my_profile(store: Store, actor: Optional[str]) -> ProfileResult:
    if not actor:
        return failure(ProfileResult, ErrorCode.UNAUTHENTICATED)
    try:
        profile = await get_profile(store, actor)
    except PersistenceError:
        logger.warning("profile: lookup failed for %s", actor, exc_info=True)
        return failure(ProfileResult, ErrorCode.PERSISTENCE_ERROR)
    if profile is None:
        return failure(ProfileResult, ErrorCode.NOT_FOUND)
    return ProfileResult(profile=profile)


async def update_my_profile(store: Store, actor: Optional[str], body: ProfileUpdate) -> ProfileResult:
    """Apply the given fields to the actor's profile, creating it on first use."""
    if not actor:
        return failure(ProfileResult, ErrorCode.UNAUTHENTICATED)
    update = body.model_dump(exclude_none=True)
    if "display_name" in update:
        update["display_name"] = update["display_name"].strip()
        if not update["display_name"]:
            return failure(ProfileResult, ErrorCode.INCOMPLETE_PROFILE)
    update["updated_at"] = now_utc()
    try:
        existing = await store.find_one("profile", {"_id": actor})
        if existing is None:
            if "display_name" not in update:
                return failure(ProfileResult, ErrorCode.INCOMPLETE_PROFILE)
            outcome = await store.insert_unique("profile", {"_id": actor, **update}, ("_id",))
            if isinstance(outcome, Inserted):
                logger.info("profile: created for %s", actor)
                return ProfileResult(profile=Profile.model_validate(outcome.doc))
        await store.update_where("profile", {"_id": actor}, update)
        profile = await get_profile(store, actor)
    except PersistenceError:
        logger.warning("profile: update failed for %s", actor, exc_info=True)
        return failure(ProfileResult, ErrorCode.PERSISTENCE_ERROR)
    return ProfileResult(profile=profile)


async def get_profile_card(store: Store, actor: Optional[str], user_id: str) -> ProfileCardResult:
    """Another user's profile together with their pets."""
    if not actor:
        return failure(ProfileCardResult, ErrorCode.UNAUTHENTICATED)
    try:
        profile = await get_profile(store, user_id)
        if profile is None:
            return failure(ProfileCardResult, ErrorCode.NOT_FOUND)
        pets = await store.list_all("pet", {"owner_id": user_id}, sort=[("_id", ASCENDING)])
    except PersistenceError:
        logger.warning("profile: card lookup failed for %s", user_id, exc_info=True)
        return failure(ProfileCardResult, ErrorCode.PERSISTENCE_ERROR)
    return ProfileCardResult(profile=profile, pets=[Pet.model_validate(p) for p in pets])


async def list_pets(store: Store, actor: Optional[str]) -> PetsResult:
    if not actor:
        return failure(PetsResult, ErrorCode.UNAUTHENTICATED)
    try:
        pets = await store.list_all("pet", {"owner_id": actor}, sort=[("_id", ASCENDING)])
    except PersistenceError:
        logger.warning("pets: listing failed for %s", actor, exc_info=True)
        return failure(PetsResult, ErrorCode.PERSISTENCE_ERROR)
    return PetsResult(pets=[Pet.model_validate(p) for p in pets])


async def add_pet(store: Store, actor: Optional[str], body: PetCreate) -> PetResult:
    if not actor:
        return failure(PetResult, ErrorCode.UNAUTHENTICATED)
    try:
        saved = await store.insert("pet", {"owner_id": actor, **body.model_dump(exclude_none=True)})
    except PersistenceError:
        logger.warning("pets: create failed for %s", actor, exc_info=True)
        return failure(PetResult, ErrorCode.PERSISTENCE_ERROR)
    return PetResult(pet=Pet.model_validate(saved))


async def update_pet(store: Store, actor: Optional[str], pet_id: str, body: PetUpdate) -> PetResult:
    if not actor:
        return failure(PetResult, ErrorCode.UNAUTHENTICATED)
    update = body.model_dump(exclude_none=True)
    try:
        pet = await store.find_one("pet", {"_id": pet_id})
        if pet is None:
            return failure(PetResult, ErrorCode.NOT_FOUND)
        if pet["owner_id"] != actor:
            return failure(PetResult, ErrorCode.FORBIDDEN)
        if update:
            await store.update_where("pet", {"_id": pet_id}, update)
            pet = await store.find_one("pet", {"_id": pet_id})
    except PersistenceError:
        logger.warning("pets: update of %s failed", pet_id, exc_info=True)
        return failure(PetResult, ErrorCode.PERSISTENCE_ERROR)
    return PetResult(pet=Pet.model_validate(pet))
