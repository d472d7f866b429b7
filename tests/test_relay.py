"""Tests for the relay engine: happy path, topic recovery and failures."""

import pytest
from pymongo.errors import PyMongoError

from relaybot.flow.relay import RelayEngine, RelayStatus
from relaybot.flow.states import RelayStage
from relaybot.models.user import UserRecord
from relaybot.services.backup_service import BackupService
from relaybot.utils.formatting import build_user_meta
from relaybot.utils.constants import DELIVERED_ACK, ERROR_DELIVERY_FAILED, ERROR_SYSTEM_BUSY, PLACEHOLDER_TEXT
from tests.conftest import ADMIN_GROUP, make_message

THREAD_GONE = "Bad Request: message thread not found"

HAPPY_STAGES = [
    RelayStage.RESOLVE_TOPIC,
    RelayStage.FORWARD_CONTENT,
    RelayStage.ENSURE_CARD,
    RelayStage.PERSIST,
    RelayStage.DONE,
]


@pytest.fixture
def engine(gateway, users, messages):
    return RelayEngine(gateway, users, messages, admin_group_id=ADMIN_GROUP)


async def known_user(users, **fields):
    """A stored user whose cached name already matches the test sender."""
    user = await users.get_or_create("42")
    user.info.name = "Alice"
    user.info.username = "alice"
    for key, value in fields.items():
        setattr(user, key, value)
    await users.update("42", info=user.info, **fields)
    return user


def sent_to_user(gateway, user_id="42"):
    return [c["text"] for c in gateway.calls_to("sendMessage") if c["chat_id"] == user_id]


@pytest.mark.asyncio
async def test_first_message_creates_topic_card_and_correlation(engine, gateway, users, messages):
    user = await users.get_or_create("42")
    message = make_message("hello", date=1700000000)

    outcome = await engine.relay(message, user)

    assert outcome.status is RelayStatus.DELIVERED
    assert outcome.retries == 0
    assert outcome.stages == HAPPY_STAGES
    assert gateway.methods() == [
        "createForumTopic",
        "sendMessage",  # placeholder
        "forwardMessage",
        "getUserProfilePhotos",
        "sendMessage",  # card
        "pinChatMessage",
        "deleteMessage",  # placeholder
        "sendMessage",  # ack
    ]

    stored = await users.get("42")
    assert stored.topic_id == outcome.topic_id
    assert stored.info.card_message_id is not None
    assert stored.info.dummy_message_id is None
    assert stored.info.join_date == 1700000000
    assert stored.info.name == "Alice"

    placeholder_id = 1000
    assert gateway.calls_to("deleteMessage")[0]["message_id"] == placeholder_id

    correlation = await messages.get("42", message.message_id)
    assert correlation.topic_message_id == outcome.forwarded_message_id
    assert correlation.text == "hello"


@pytest.mark.asyncio
async def test_ack_replies_silently_to_the_sender(engine, gateway, users):
    user = await known_user(users, topic_id="300")
    user.info.card_message_id = 5

    await engine.relay(make_message("hi", message_id=31), user)

    ack = [c for c in gateway.calls_to("sendMessage") if c["text"] == DELIVERED_ACK][0]
    assert ack["chat_id"] == "42"
    assert ack["reply_to_message_id"] == 31
    assert ack["disable_notification"] is True


@pytest.mark.asyncio
async def test_stale_topic_is_replaced_once(engine, gateway, users):
    user = await known_user(users, topic_id="300")
    user.info.card_message_id = 5
    gateway.fail("forwardMessage", THREAD_GONE)
    gateway.fail("copyMessage", THREAD_GONE)

    outcome = await engine.relay(make_message("hi"), user)

    assert outcome.status is RelayStatus.DELIVERED
    assert outcome.retries == 1
    assert RelayStage.RETRY in outcome.stages
    assert outcome.stages[-1] is RelayStage.DONE
    # the copy fallback ran once, in the old topic
    assert [c["message_thread_id"] for c in gateway.calls_to("copyMessage")] == ["300"]
    assert len(gateway.calls_to("createForumTopic")) == 1

    stored = await users.get("42")
    assert stored.topic_id == outcome.topic_id != "300"
    # new topic, new card
    assert len(gateway.calls_to("pinChatMessage")) == 1


@pytest.mark.asyncio
async def test_topic_that_keeps_vanishing_fails_after_one_retry(engine, gateway, users):
    user = await users.get_or_create("42")
    gateway.fail_always("forwardMessage", THREAD_GONE)
    gateway.fail_always("copyMessage", THREAD_GONE)

    outcome = await engine.relay(make_message("hi"), user)

    assert outcome.status is RelayStatus.FAILED
    assert outcome.retries == 1
    assert len(gateway.calls_to("createForumTopic")) == 2
    assert outcome.stages[-2:] == [RelayStage.RETRY, RelayStage.FAIL]
    assert ERROR_DELIVERY_FAILED in sent_to_user(gateway)
    assert (await users.get("42")).topic_id is None


@pytest.mark.asyncio
async def test_card_on_vanished_topic_triggers_retry(engine, gateway, users):
    user = await known_user(users, topic_id="300")
    gateway.fail("sendMessage", THREAD_GONE)

    outcome = await engine.relay(make_message("hi"), user)

    assert outcome.status is RelayStatus.DELIVERED
    assert outcome.retries == 1
    assert outcome.stages[:4] == [
        RelayStage.RESOLVE_TOPIC,
        RelayStage.FORWARD_CONTENT,
        RelayStage.ENSURE_CARD,
        RelayStage.RETRY,
    ]


@pytest.mark.asyncio
async def test_quote_is_rendered_not_forwarded(engine, gateway, users):
    user = await known_user(users, topic_id="300")
    user.info.card_message_id = 5

    outcome = await engine.relay(make_message("> quoted <b>"), user)

    assert outcome.status is RelayStatus.DELIVERED
    assert "forwardMessage" not in gateway.methods()
    quote = gateway.calls_to("sendMessage")[0]
    assert quote["chat_id"] == ADMIN_GROUP
    assert quote["text"] == "<blockquote>quoted &lt;b&gt;</blockquote>"
    assert quote["parse_mode"] == "HTML"


@pytest.mark.asyncio
async def test_unforwardable_message_is_copied(engine, gateway, users):
    user = await known_user(users, topic_id="300")
    user.info.card_message_id = 5
    gateway.fail("forwardMessage", "Bad Request: message can't be forwarded")

    outcome = await engine.relay(make_message("hi"), user)

    assert outcome.status is RelayStatus.DELIVERED
    assert outcome.retries == 0
    copy = gateway.calls_to("copyMessage")[0]
    assert copy["message_thread_id"] == "300"
    assert outcome.forwarded_message_id is not None


@pytest.mark.asyncio
async def test_rejected_content_fails_without_retry(engine, gateway, users):
    user = await known_user(users, topic_id="300")
    user.info.card_message_id = 5
    gateway.fail_always("forwardMessage", "Bad Request: MEDIA_EMPTY")
    gateway.fail_always("copyMessage", "Bad Request: MEDIA_EMPTY")

    outcome = await engine.relay(make_message(text=None, photo=[{"file_id": "p"}]), user)

    assert outcome.status is RelayStatus.FAILED
    assert outcome.retries == 0
    assert outcome.stages == [RelayStage.RESOLVE_TOPIC, RelayStage.FORWARD_CONTENT, RelayStage.FAIL]
    assert (await users.get("42")).topic_id == "300"
    assert ERROR_DELIVERY_FAILED in sent_to_user(gateway)


@pytest.mark.asyncio
async def test_card_and_placeholder_cleanup_in_one_write(engine, gateway, users, monkeypatch):
    user = await known_user(users, topic_id="300")
    user.info.dummy_message_id = 88
    await users.update("42", info=user.info)

    writes = []
    original_update_info = users.update_info

    async def spy(user_id, **fields):
        writes.append(fields)
        return await original_update_info(user_id, **fields)

    monkeypatch.setattr(users, "update_info", spy)

    await engine.relay(make_message("hi", date=1700000500), user)

    assert len(writes) == 1
    assert writes[0]["card_message_id"] is not None
    assert writes[0]["dummy_message_id"] is None
    assert writes[0]["join_date"] == 1700000500
    assert gateway.calls_to("deleteMessage")[0]["message_id"] == 88


@pytest.mark.asyncio
async def test_placeholder_kept_when_card_fails(engine, gateway, users):
    user = await known_user(users, topic_id="300")
    user.info.dummy_message_id = 88
    await users.update("42", info=user.info)
    gateway.fail("sendMessage", "Forbidden: not enough rights", error_code=403)

    outcome = await engine.relay(make_message("hi"), user)

    assert outcome.status is RelayStatus.DELIVERED
    assert "deleteMessage" not in gateway.methods()
    assert (await users.get("42")).info.dummy_message_id == 88


@pytest.mark.asyncio
async def test_topic_creation_failure_reports_busy(engine, gateway, users):
    user = await users.get_or_create("42")
    gateway.fail("createForumTopic", "Bad Request: not enough rights to create a topic")

    outcome = await engine.relay(make_message("hi"), user)

    assert outcome.status is RelayStatus.BUSY
    assert sent_to_user(gateway) == [ERROR_SYSTEM_BUSY]


@pytest.mark.asyncio
async def test_message_during_topic_creation_is_abandoned(engine, gateway, users):
    user = await users.get_or_create("42")

    async with engine.resolver.locks.hold("42"):
        outcome = await engine.relay(make_message("hi"), user)

    assert outcome.status is RelayStatus.ABANDONED
    assert sent_to_user(gateway) == []
    assert "createForumTopic" not in gateway.methods()


@pytest.mark.asyncio
async def test_name_change_renames_topic(engine, gateway, users):
    user = await users.get_or_create("42")
    user.info.name = "Old name"
    user.info.card_message_id = 5
    user.topic_id = "300"
    await users.update("42", topic_id="300", info=user.info)

    await engine.relay(make_message("hi"), user)

    rename = gateway.calls_to("editForumTopic")[0]
    assert rename["message_thread_id"] == "300"
    assert rename["name"] == "Alice"
    assert (await users.get("42")).info.name == "Alice"


@pytest.mark.asyncio
async def test_relayed_message_is_backed_up(gateway, users, messages, config):
    await config.set("backup_group_id", "-200")
    engine = RelayEngine(gateway, users, messages, backup=BackupService(gateway, config), admin_group_id=ADMIN_GROUP)
    user = await known_user(users, topic_id="300")
    user.info.card_message_id = 5

    await engine.relay(make_message("a < b"), user)

    backup = [c for c in gateway.calls_to("sendMessage") if c["chat_id"] == "-200"][0]
    assert backup["text"].endswith("a &lt; b")
    assert "Alice" in backup["text"]


@pytest.mark.asyncio
async def test_media_backup_copies_the_message(gateway, config):
    await config.set("backup_group_id", "-200")
    service = BackupService(gateway, config)
    message = make_message(text=None, photo=[{"file_id": "p"}])

    meta = build_user_meta(message.from_user, UserRecord(user_id="42"), 1)
    assert await service.backup(message, meta)
    assert gateway.methods() == ["sendMessage", "copyMessage"]


@pytest.mark.asyncio
async def test_placeholder_text_is_the_loading_notice(engine, gateway, users):
    user = await users.get_or_create("42")
    await engine.relay(make_message("hi"), user)
    assert gateway.calls_to("sendMessage")[0]["text"] == PLACEHOLDER_TEXT


@pytest.mark.asyncio
async def test_deleted_source_message_keeps_the_topic(engine, gateway, users):
    user = await known_user(users, topic_id="300")
    user.info.card_message_id = 5
    gateway.fail("forwardMessage", "Bad Request: message to forward not found")
    gateway.fail("copyMessage", "Bad Request: message to copy not found")

    outcome = await engine.relay(make_message("hi"), user)

    assert outcome.status is RelayStatus.FAILED
    assert outcome.retries == 0
    assert RelayStage.RETRY not in outcome.stages
    assert len(gateway.calls_to("copyMessage")) == 1
    assert "createForumTopic" not in gateway.methods()
    assert (await users.get("42")).topic_id == "300"
    assert sent_to_user(gateway) == [ERROR_DELIVERY_FAILED]


@pytest.mark.asyncio
async def test_any_forward_failure_falls_back_to_copy(engine, gateway, users):
    user = await known_user(users, topic_id="300")
    user.info.card_message_id = 5
    gateway.fail("forwardMessage", "Bad Request: message to forward not found")

    outcome = await engine.relay(make_message("hi"), user)

    assert outcome.status is RelayStatus.DELIVERED
    assert outcome.topic_id == "300"
    assert gateway.methods()[:2] == ["forwardMessage", "copyMessage"]
    assert "createForumTopic" not in gateway.methods()


@pytest.mark.asyncio
async def test_storage_failure_reports_delivery_failed(engine, gateway, users, messages, monkeypatch):
    user = await known_user(users, topic_id="300")
    user.info.card_message_id = 5

    async def broken_save(correlation):
        raise PyMongoError("write failed")

    monkeypatch.setattr(messages, "save", broken_save)

    outcome = await engine.relay(make_message("hi"), user)

    assert outcome.status is RelayStatus.FAILED
    assert outcome.stages[-2:] == [RelayStage.PERSIST, RelayStage.FAIL]
    assert sent_to_user(gateway) == [ERROR_DELIVERY_FAILED]


@pytest.mark.asyncio
async def test_card_write_keeps_fields_written_meanwhile(engine, gateway, users):
    user = await known_user(users, topic_id="300")
    # an admin handler stores a note after this relay loaded the record
    await users.update_info("42", note="VIP", blacklist_message_id=77)

    outcome = await engine.relay(make_message("hi"), user)

    assert outcome.status is RelayStatus.DELIVERED
    stored = await users.get("42")
    assert stored.info.card_message_id is not None
    assert stored.info.note == "VIP"
    assert stored.info.blacklist_message_id == 77
