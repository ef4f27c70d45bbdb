from __future__ import annotations

import base64
import logging
from typing import Any, Dict, Optional

from school_companion.errors import ValidationError
from school_companion.store import RecordStore

logger = logging.getLogger(__name__)

SETTINGS = "settings"

PROFILE_KEY = "profile"
DARK_MODE_KEY = "dark_mode"

PROFILE_FIELDS = ("first_name", "last_name", "year", "section", "school")


async def get_setting(store: RecordStore, key: str, default: Any = None) -> Any:
    rec = await store.get(SETTINGS, key)
    return rec.get("value", default) if rec else default


async def set_setting(store: RecordStore, key: str, value: Any) -> None:
    await store.put(SETTINGS, {"key": key, "value": value})


# -------------------------------
# Profile
# -------------------------------

async def load_profile(store: RecordStore) -> Dict[str, Any]:
    profile = await get_setting(store, PROFILE_KEY, {})
    return profile if isinstance(profile, dict) else {}


async def save_profile(store: RecordStore, profile: Dict[str, Any]) -> Dict[str, Any]:
    current = await load_profile(store)
    clean = {f: str(profile.get(f) or "").strip() for f in PROFILE_FIELDS}
    if not clean["first_name"] or not clean["last_name"]:
        raise ValidationError("Enter first and last name")

    # the photo is managed separately and survives profile edits
    if current.get("photo"):
        clean["photo"] = current["photo"]

    await set_setting(store, PROFILE_KEY, clean)
    logger.info("Saved profile")
    return clean


async def save_profile_photo(store: RecordStore, data: bytes, mime: Optional[str] = "image/png") -> str:
    if not data:
        raise ValidationError("The photo is empty")
    mime = mime or "image/png"
    if not mime.startswith("image/"):
        raise ValidationError(f"Not an image: {mime}")

    data_url = f"data:{mime};base64,{base64.b64encode(data).decode('ascii')}"
    profile = await load_profile(store)
    profile["photo"] = data_url
    await set_setting(store, PROFILE_KEY, profile)
    logger.info("Saved profile photo (%d bytes)", len(data))
    return data_url


def profile_display(profile: Dict[str, Any]) -> Dict[str, str]:
    name = f"{profile.get('first_name', '')} {profile.get('last_name', '')}".strip()

    details = ""
    if profile.get("year"):
        details += f"Year {profile['year']} "
    if profile.get("section"):
        details += f"{profile['section']} • "
    details += str(profile.get("school") or "")
    details = details.strip().rstrip("•").strip()

    return {
        "name": name or "Student",
        "details": details or "Complete your profile",
    }


# -------------------------------
# Theme
# -------------------------------

async def get_dark_mode(store: RecordStore) -> bool:
    return bool(await get_setting(store, DARK_MODE_KEY, False))


async def set_dark_mode(store: RecordStore, enabled: bool) -> bool:
    await set_setting(store, DARK_MODE_KEY, bool(enabled))
    return bool(enabled)


async def toggle_dark_mode(store: RecordStore) -> bool:
    return await set_dark_mode(store, not await get_dark_mode(store))
