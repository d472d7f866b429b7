"""Tests for the verified-user inbox filters."""

import pytest

from relaybot.flow.handlers.inbox import find_auto_reply, handle_verified_message, pattern_matches
from relaybot.flow.states import UserState
from relaybot.utils.constants import AUTO_REPLY_PREFIX, BLOCKED_NOTICE, BLOCKLIST_TOPIC_NAME, BUSY_PREFIX, DELIVERED_ACK
from tests.conftest import OWNER_ID, make_message


async def verified(services, user_id="42"):
    user = await services.users.get_or_create(user_id)
    await services.users.set_state(user_id, UserState.VERIFIED)
    user.state = UserState.VERIFIED
    return user


def texts_to(gateway, chat_id="42"):
    return [c["text"] for c in gateway.calls_to("sendMessage") if c["chat_id"] == chat_id]


def test_pattern_matching():
    assert pattern_matches("CASINO", "best casino online")
    assert pattern_matches(r"free\s+money", "Free   money!")
    assert not pattern_matches("[unclosed", "[unclosed")
    assert not pattern_matches("", "anything")


def test_first_matching_auto_reply_wins():
    rules = [
        "not a rule",
        {"keywords": "price|cost", "response": "See the price list"},
        {"keywords": "price", "response": "never reached"},
    ]
    assert find_auto_reply(rules, "What's the COST?") == "See the price list"
    assert find_auto_reply(rules, "hello") is None


@pytest.mark.asyncio
async def test_plain_message_is_relayed(services):
    user = await verified(services)

    await handle_verified_message(make_message("hello"), user)

    assert "forwardMessage" in services.gateway.methods()
    assert DELIVERED_ACK in texts_to(services.gateway)


@pytest.mark.asyncio
async def test_blocked_keyword_counts_a_strike(services):
    await services.config.set("block_keywords", '["casino"]')
    user = await verified(services)

    await handle_verified_message(make_message("Casino bonus"), user)

    assert texts_to(services.gateway) == ["⚠️ Blocked keyword (1/5)"]
    stored = await services.users.get("42")
    assert stored.block_count == 1
    assert not stored.is_blocked
    assert "forwardMessage" not in services.gateway.methods()


@pytest.mark.asyncio
async def test_strike_at_threshold_blocks_and_lists_user(services):
    await services.config.set("block_keywords", '["casino"]')
    await services.config.set("block_threshold", "2")
    user = await verified(services)
    user.block_count = 1
    await services.users.update("42", block_count=1)

    await handle_verified_message(make_message("casino"), user)

    stored = await services.users.get("42")
    assert stored.is_blocked
    assert stored.block_count == 2
    assert stored.info.blacklist_message_id is not None
    assert services.gateway.calls_to("createForumTopic")[0]["name"] == BLOCKLIST_TOPIC_NAME
    assert await services.config.get("blocked_topic_id") != ""
    assert texts_to(services.gateway) == [BLOCKED_NOTICE]


@pytest.mark.asyncio
async def test_disabled_content_kind_is_refused(services):
    await services.config.set("enable_sticker_forwarding", "false")
    user = await verified(services)

    await handle_verified_message(make_message(text=None, sticker={"file_id": "s"}), user)

    assert texts_to(services.gateway) == ["⚠️ stickers/GIFs are not accepted"]
    assert "forwardMessage" not in services.gateway.methods()


@pytest.mark.asyncio
async def test_admins_bypass_content_switches(services):
    await services.config.set("enable_sticker_forwarding", "false")
    user = await verified(services, OWNER_ID)

    message = make_message(text=None, user_id=int(OWNER_ID), sticker={"file_id": "s"})
    await handle_verified_message(message, user)

    assert "forwardMessage" in services.gateway.methods()


@pytest.mark.asyncio
async def test_busy_notice_is_rate_limited(services):
    await services.config.set("busy_mode", "true")
    await services.config.set("busy_msg", "Back tomorrow")
    user = await verified(services)

    await handle_verified_message(make_message("one", message_id=1), user)
    await handle_verified_message(make_message("two", message_id=2), user)

    notices = [t for t in texts_to(services.gateway) if t.startswith(BUSY_PREFIX)]
    assert notices == [BUSY_PREFIX + "Back tomorrow"]
    # busy mode still relays
    assert len(services.gateway.calls_to("forwardMessage")) == 2
    assert (await services.users.get("42")).info.last_busy_reply is not None


@pytest.mark.asyncio
async def test_auto_reply_answers_instead_of_relaying(services):
    await services.config.set("keyword_responses", '[{"keywords": "price|cost", "response": "See the price list"}]')
    user = await verified(services)

    await handle_verified_message(make_message("what is the price?"), user)

    assert texts_to(services.gateway) == [AUTO_REPLY_PREFIX + "See the price list"]
    assert "forwardMessage" not in services.gateway.methods()
