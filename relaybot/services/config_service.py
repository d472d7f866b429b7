"""
relaybot/services/config_service.py

Purpose: Runtime configuration stored in MongoDB

- Key/value settings editable from the admin panel
- Process-wide read-through snapshot with a TTL
- Any write invalidates the snapshot immediately
- Falls back to environment values, then built-in defaults
"""

import json
import time
from typing import Optional, Dict, Any, Callable, List

from motor.motor_asyncio import AsyncIOMotorCollection

from relaybot.db.mongo import get_config_collection
from relaybot.core.config import settings
from relaybot.core.logging import get_logger

logger = get_logger(__name__)


DEFAULTS: Dict[str, str] = {
    # Base
    "welcome_msg": "Welcome {name}! Please complete verification before sending messages.",

    # Verification
    "enable_verify": "true",
    "enable_qa_verify": "true",
    "captcha_mode": "turnstile",
    "verif_q": "1+1=?\nHint: the answer is in the bot description.",
    "verif_a": "3",

    # Abuse control
    "block_threshold": "5",
    "enable_admin_receipt": "true",

    # Content switches
    "enable_image_forwarding": "true",
    "enable_link_forwarding": "true",
    "enable_text_forwarding": "true",
    "enable_channel_forwarding": "true",
    "enable_forward_forwarding": "true",
    "enable_audio_forwarding": "true",
    "enable_sticker_forwarding": "true",

    # Topics, lists, busy mode
    "backup_group_id": "",
    "blocked_topic_id": "",
    "busy_mode": "false",
    "busy_msg": "We are currently offline. Your message was received and an admin will reply later.",
    "block_keywords": "[]",
    "keyword_responses": "[]",
    "authorized_admins": "[]",
}

# Runtime key -> Settings attribute used when the key was never stored
ENV_FALLBACKS: Dict[str, str] = {
    "welcome_msg": "WELCOME_MESSAGE",
    "verif_q": "VERIF_QUESTION",
    "verif_a": "VERIF_ANSWER",
}

ADMIN_STATE_PREFIX = "admin_state:"


def safe_json(raw: Optional[str], fallback: Any) -> Any:
    """Parses JSON, returning `fallback` on empty or malformed input."""
    if not raw:
        return fallback
    try:
        return json.loads(raw)
    except (TypeError, ValueError) as e:
        logger.warning(f"Ignoring malformed JSON config value: {e}")
        return fallback


class ConfigService:
    """
    Read-through cache over the config collection.

    The snapshot holds the whole table. It is empty at process start,
    reloaded when older than `ttl` seconds or when a key is missing, and
    dropped on every write from this process. Other processes see writes
    once their own snapshot expires.
    """

    def __init__(
        self,
        collection: Optional[AsyncIOMotorCollection] = None,
        ttl: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._collection = collection
        self.ttl = settings.CONFIG_CACHE_TTL_SECONDS if ttl is None else ttl
        self._clock = clock
        self._data: Dict[str, str] = {}
        self._loaded_at: Optional[float] = None

    @property
    def collection(self) -> AsyncIOMotorCollection:
        if self._collection is None:
            self._collection = get_config_collection()
        return self._collection

    def _is_fresh(self) -> bool:
        return self._loaded_at is not None and (self._clock() - self._loaded_at) < self.ttl

    def invalidate(self) -> None:
        self._loaded_at = None

    async def _reload(self) -> None:
        rows = await self.collection.find({}, {"_id": 0, "key": 1, "value": 1}).to_list(length=None)
        self._data = {row["key"]: row.get("value", "") for row in rows if "key" in row}
        self._loaded_at = self._clock()
        logger.debug(f"Config snapshot reloaded ({len(self._data)} keys)")

    async def get(self, key: str) -> str:
        """
        Returns a config value.

        Args:
            key: Config key

        Returns:
            Stored value, environment fallback, default, or ""
        """
        if not (self._is_fresh() and key in self._data):
            await self._reload()

        if key in self._data:
            return self._data[key]

        env_attr = ENV_FALLBACKS.get(key)
        env_value = getattr(settings, env_attr, None) if env_attr else None
        if env_value:
            return env_value

        return DEFAULTS.get(key, "")

    async def get_bool(self, key: str) -> bool:
        return (await self.get(key)) == "true"

    async def get_int(self, key: str, fallback: int = 0) -> int:
        try:
            return int(await self.get(key))
        except ValueError:
            return fallback

    async def get_json(self, key: str, fallback: Any = None) -> Any:
        return safe_json(await self.get(key), [] if fallback is None else fallback)

    async def set(self, key: str, value: str) -> None:
        await self.collection.update_one(
            {"key": key},
            {"$set": {"key": key, "value": value}},
            upsert=True,
        )
        self.invalidate()
        logger.info(f"Config updated: {key}")

    async def delete(self, key: str) -> None:
        await self.collection.delete_one({"key": key})
        self.invalidate()

    # ------------------------------------------------------------------
    # Admin helpers
    # ------------------------------------------------------------------

    async def get_admin_state(self, admin_id: str) -> Optional[Dict[str, Any]]:
        """Pending panel input for an admin, e.g. {"action": "input", "key": "busy_msg"}."""
        state = safe_json(await self.get(f"{ADMIN_STATE_PREFIX}{admin_id}"), None)
        return state if isinstance(state, dict) else None

    async def set_admin_state(self, admin_id: str, state: Dict[str, Any]) -> None:
        await self.set(f"{ADMIN_STATE_PREFIX}{admin_id}", json.dumps(state))

    async def clear_admin_state(self, admin_id: str) -> None:
        await self.delete(f"{ADMIN_STATE_PREFIX}{admin_id}")

    async def authorized_admins(self) -> List[str]:
        return [str(i) for i in await self.get_json("authorized_admins", [])]

    async def is_authorized_admin(self, user_id: Any) -> bool:
        """Owner admins (ADMIN_IDS) plus admins granted from the panel."""
        uid = str(user_id)
        if uid in settings.admin_ids:
            return True
        return uid in await self.authorized_admins()


_config_service: Optional[ConfigService] = None


def get_config_service() -> ConfigService:
    """Get or create the process-wide config service."""
    global _config_service
    if _config_service is None:
        _config_service = ConfigService()
    return _config_service
