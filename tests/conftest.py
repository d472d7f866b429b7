"""Shared fixtures: in-memory collections, a recording Bot API gateway, message builders."""

import asyncio
import copy
import itertools
from types import SimpleNamespace
from typing import Any, Dict, List, Optional, Tuple

import pytest

from relaybot.core.config import settings
from relaybot.core.exceptions import GatewayError
from relaybot.flow import relay as relay_module
from relaybot.flow.handlers import private as private_module
from relaybot.schemas.telegram import Message, CallbackQuery
from relaybot.services import config_service as config_module
from relaybot.services import message_service as message_module
from relaybot.services import telegram_gateway as gateway_module
from relaybot.services import user_service as user_module
from relaybot.services.config_service import ConfigService
from relaybot.services.message_service import MessageService
from relaybot.services.telegram_gateway import TelegramGateway, classify_error
from relaybot.services.user_service import UserService

ADMIN_GROUP = "-1001234567890"
OWNER_ID = "999"


# =============================================================================
# In-memory Motor collection
# =============================================================================

def _matches(doc: Dict[str, Any], query: Dict[str, Any]) -> bool:
    return all(doc.get(k) == v for k, v in query.items())


def _apply_set(doc: Dict[str, Any], fields: Dict[str, Any]) -> None:
    """$set semantics, including dotted keys into nested documents."""
    for key, value in copy.deepcopy(fields).items():
        target = doc
        *parents, leaf = key.split(".")
        for part in parents:
            target = target.setdefault(part, {})
        target[leaf] = value


class FakeCursor:
    def __init__(self, docs: List[Dict[str, Any]]):
        self._docs = docs

    async def to_list(self, length: Optional[int] = None) -> List[Dict[str, Any]]:
        return self._docs if length is None else self._docs[:length]


class FakeCollection:
    """The subset of AsyncIOMotorCollection the services use."""

    def __init__(self):
        self.docs: List[Dict[str, Any]] = []
        self.find_calls = 0

    def _first(self, query):
        return next((d for d in self.docs if _matches(d, query)), None)

    async def find_one(self, query):
        doc = self._first(query)
        return copy.deepcopy(doc) if doc else None

    def find(self, query=None, projection=None):
        self.find_calls += 1
        found = [copy.deepcopy(d) for d in self.docs if _matches(d, query or {})]
        if projection:
            keep = [k for k, v in projection.items() if v]
            found = [{k: d[k] for k in keep if k in d} for d in found]
        return FakeCursor(found)

    async def find_one_and_update(self, query, update, upsert=False, return_document=None):
        doc = self._first(query)
        if doc is None:
            if not upsert:
                return None
            doc = dict(query)
            doc.update(copy.deepcopy(update.get("$setOnInsert", {})))
            self.docs.append(doc)
        _apply_set(doc, update.get("$set", {}))
        return copy.deepcopy(doc)

    async def update_one(self, query, update, upsert=False):
        doc = self._first(query)
        if doc is None:
            if not upsert:
                return SimpleNamespace(matched_count=0, modified_count=0)
            doc = dict(query)
            self.docs.append(doc)
        before = copy.deepcopy(doc)
        _apply_set(doc, update.get("$set", {}))
        return SimpleNamespace(matched_count=1, modified_count=int(before != doc))

    async def replace_one(self, query, replacement, upsert=False):
        doc = self._first(query)
        if doc is None:
            if upsert:
                self.docs.append(copy.deepcopy(replacement))
            return SimpleNamespace(matched_count=0, modified_count=0)
        doc.clear()
        doc.update(copy.deepcopy(replacement))
        return SimpleNamespace(matched_count=1, modified_count=1)

    async def delete_one(self, query):
        doc = self._first(query)
        if doc is not None:
            self.docs.remove(doc)
        return SimpleNamespace(deleted_count=int(doc is not None))


# =============================================================================
# Recording gateway
# =============================================================================

SEND_METHODS = {
    "sendMessage", "sendPhoto", "sendVideo", "sendAnimation", "forwardMessage", "copyMessage",
}


class FakeGateway(TelegramGateway):
    """
    Records every Bot API call instead of sending it.

    `fail(method, description)` queues failures; `gate(method)` makes the
    next calls of a method wait on an asyncio.Event.
    """

    def __init__(self):
        super().__init__(token="test-token", base_url="https://api.test")
        self.calls: List[Tuple[str, Dict[str, Any]]] = []
        self.profile_photos: Dict[str, Any] = {"total_count": 0, "photos": []}
        self._failures: Dict[str, List[Tuple[str, Optional[int], bool]]] = {}
        self._gates: Dict[str, asyncio.Event] = {}
        self._message_ids = itertools.count(1000)
        self._topic_ids = itertools.count(500)

    def fail(self, method: str, description: str, times: int = 1, error_code: Optional[int] = 400):
        self._failures.setdefault(method, []).extend([(description, error_code, False)] * times)

    def fail_always(self, method: str, description: str, error_code: Optional[int] = 400):
        self._failures[method] = [(description, error_code, True)]

    def gate(self, method: str) -> asyncio.Event:
        self._gates[method] = asyncio.Event()
        return self._gates[method]

    def calls_to(self, method: str) -> List[Dict[str, Any]]:
        return [payload for name, payload in self.calls if name == method]

    def methods(self) -> List[str]:
        return [name for name, _ in self.calls]

    async def call(self, method: str, **payload: Any) -> Any:
        body = {k: v for k, v in payload.items() if v is not None}
        self.calls.append((method, body))

        if method in self._gates:
            await self._gates[method].wait()

        queue = self._failures.get(method)
        if queue:
            description, error_code, sticky = queue[0]
            if not sticky:
                queue.pop(0)
            raise GatewayError(method, description, classify_error(description, error_code), error_code)

        if method in SEND_METHODS:
            return {"message_id": next(self._message_ids)}
        if method == "createForumTopic":
            return {"message_thread_id": next(self._topic_ids), "name": body.get("name")}
        if method == "getUserProfilePhotos":
            return self.profile_photos
        return True


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def users() -> UserService:
    return UserService(collection=FakeCollection())


@pytest.fixture
def messages() -> MessageService:
    return MessageService(collection=FakeCollection())


@pytest.fixture
def config() -> ConfigService:
    return ConfigService(collection=FakeCollection(), ttl=60.0)


@pytest.fixture(autouse=True)
def bot_settings(monkeypatch):
    monkeypatch.setattr(settings, "ADMIN_GROUP_ID", ADMIN_GROUP)
    monkeypatch.setattr(settings, "ADMIN_IDS", OWNER_ID)
    monkeypatch.setattr(settings, "WEBHOOK_SECRET", None)
    monkeypatch.setattr(settings, "PUBLIC_URL", "")
    monkeypatch.setattr(settings, "DISPLAY_TIMEZONE", "UTC")
    return settings


@pytest.fixture
def services(monkeypatch, gateway, users, messages, config):
    """Installs the fakes behind the get_*() singletons used by the handlers."""
    monkeypatch.setattr(gateway_module, "_gateway", gateway)
    monkeypatch.setattr(user_module, "_user_service", users)
    monkeypatch.setattr(message_module, "_message_service", messages)
    monkeypatch.setattr(config_module, "_config_service", config)
    monkeypatch.setattr(relay_module, "_relay_engine", None)
    monkeypatch.setattr(private_module, "_warned_at", {})
    return SimpleNamespace(gateway=gateway, users=users, messages=messages, config=config)


# =============================================================================
# Builders
# =============================================================================

def make_message(
    text: Optional[str] = "hi",
    user_id: int = 42,
    message_id: int = 10,
    first_name: str = "Alice",
    last_name: Optional[str] = None,
    username: Optional[str] = "alice",
    date: int = 1700000000,
    **extra: Any,
) -> Message:
    sender = {"id": user_id, "is_bot": False, "first_name": first_name}
    if last_name:
        sender["last_name"] = last_name
    if username:
        sender["username"] = username
    payload = {
        "message_id": message_id,
        "date": date,
        "chat": {"id": user_id, "type": "private"},
        "from": sender,
    }
    if text is not None:
        payload["text"] = text
    payload.update(extra)
    return Message.model_validate(payload)


def make_group_message(
    text: Optional[str] = "reply",
    admin_id: int = int(OWNER_ID),
    thread_id: Optional[int] = 500,
    message_id: int = 77,
    **extra: Any,
) -> Message:
    payload = {
        "message_id": message_id,
        "date": 1700000100,
        "chat": {"id": int(ADMIN_GROUP), "type": "supergroup"},
        "from": {"id": admin_id, "is_bot": False, "first_name": "Admin"},
    }
    if thread_id is not None:
        payload["message_thread_id"] = thread_id
    if text is not None:
        payload["text"] = text
    payload.update(extra)
    return Message.model_validate(payload)


def make_callback(data: str, from_id: int = int(OWNER_ID), message: Optional[Message] = None) -> CallbackQuery:
    payload = {"id": "cb-1", "from": {"id": from_id, "first_name": "Admin"}, "data": data}
    if message is not None:
        payload["message"] = message.model_dump(by_alias=True, exclude_none=True)
    return CallbackQuery.model_validate(payload)
