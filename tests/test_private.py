"""Tests for the private chat flow: gate, /start, verification and captcha."""

import json

import httpx
import pytest

from relaybot.flow.dispatcher import handle_update
from relaybot.flow.handlers.private import handle_private, warn_allowed
from relaybot.flow.handlers.verification import render_verify_page, submit_captcha_token, verify_captcha_token
from relaybot.flow.states import UserState
from relaybot.schemas.telegram import Update
from relaybot.utils.constants import (
    ADMIN_HELP,
    PANEL_TITLE,
    QA_PROMPT,
    VERIFIED_MESSAGE,
    VERIFY_FIRST,
    WRONG_ANSWER,
)
from tests.conftest import OWNER_ID, make_message


def texts_to(gateway, chat_id="42"):
    return [c["text"] for c in gateway.calls_to("sendMessage") if str(c["chat_id"]) == chat_id]


def captcha_transport(success: bool, seen: dict = None):
    def handler(request: httpx.Request) -> httpx.Response:
        if seen is not None:
            seen["url"] = str(request.url)
            seen["content_type"] = request.headers.get("content-type", "")
            seen["body"] = request.content.decode()
        return httpx.Response(200, json={"success": success})

    return httpx.MockTransport(handler)


@pytest.mark.asyncio
async def test_unverified_message_gets_one_warning_per_cooldown(services):
    await handle_private(make_message("hi", message_id=1))
    await handle_private(make_message("hi again", message_id=2))

    warnings = services.gateway.calls_to("sendMessage")
    assert [w["text"] for w in warnings] == [VERIFY_FIRST]
    assert warnings[0]["reply_to_message_id"] == 1


def test_warning_cooldown(services):
    assert warn_allowed("1", 100.0)
    assert not warn_allowed("1", 102.9)
    assert warn_allowed("1", 103.0)
    assert warn_allowed("2", 100.5)


@pytest.mark.asyncio
async def test_start_without_captcha_url_asks_the_question(services):
    await handle_private(make_message("/start"))

    sent = texts_to(services.gateway)
    assert sent[0].startswith("Welcome Alice!")
    assert sent[1].startswith(QA_PROMPT)
    assert "1+1=?" in sent[1]
    assert (await services.users.get("42")).state is UserState.PENDING_VERIFICATION


@pytest.mark.asyncio
async def test_start_offers_captcha_web_app(services, bot_settings, monkeypatch):
    monkeypatch.setattr(bot_settings, "PUBLIC_URL", "https://bot.example")
    monkeypatch.setattr(bot_settings, "API_PREFIX", "")
    monkeypatch.setattr(bot_settings, "TURNSTILE_SITE_KEY", "site-key")

    await handle_private(make_message("/start"))

    prompt = services.gateway.calls_to("sendMessage")[-1]
    button = prompt["reply_markup"]["inline_keyboard"][0][0]
    assert button["web_app"]["url"] == "https://bot.example/verify?user_id=42"
    assert (await services.users.get("42")).state is UserState.NEW


@pytest.mark.asyncio
async def test_media_welcome(services):
    await services.config.set("welcome_msg", json.dumps({"type": "photo", "file_id": "F", "caption": "Hi {name}"}))

    await handle_private(make_message("/start", first_name="<Zoe>"))

    photo = services.gateway.calls_to("sendPhoto")[0]
    assert photo["photo"] == "F"
    assert photo["caption"] == "Hi &lt;Zoe&gt;"


@pytest.mark.asyncio
async def test_rejected_welcome_falls_back(services):
    services.gateway.fail("sendMessage", "Bad Request: can't parse entities")

    await handle_private(make_message("/start"))

    assert texts_to(services.gateway)[1] == "Welcome!"


@pytest.mark.asyncio
async def test_start_resends_card_into_existing_topic(services):
    await services.users.get_or_create("42")
    await services.users.update("42", topic_id="300")

    await handle_private(make_message("/start"))

    card = [c for c in services.gateway.calls_to("sendMessage") if c.get("message_thread_id") == "300"]
    assert len(card) == 1
    stored = await services.users.get("42")
    assert stored.info.card_message_id is not None


@pytest.mark.asyncio
async def test_start_drops_topic_when_card_cannot_be_sent(services):
    await services.users.get_or_create("42")
    await services.users.update("42", topic_id="300")
    services.gateway.fail("sendMessage", "Bad Request: message thread not found")

    await handle_private(make_message("/start"))

    assert (await services.users.get("42")).topic_id is None


@pytest.mark.asyncio
async def test_question_answer(services):
    await handle_private(make_message("/start"))

    await handle_private(make_message("4"))
    assert texts_to(services.gateway)[-1] == WRONG_ANSWER
    assert (await services.users.get("42")).state is UserState.PENDING_VERIFICATION

    await handle_private(make_message("  3 "))
    assert texts_to(services.gateway)[-1] == VERIFIED_MESSAGE
    assert (await services.users.get("42")).state is UserState.VERIFIED


@pytest.mark.asyncio
async def test_verified_user_message_is_relayed(services):
    await services.users.get_or_create("42")
    await services.users.set_state("42", UserState.VERIFIED)

    await handle_private(make_message("hello"))

    assert "forwardMessage" in services.gateway.methods()


@pytest.mark.asyncio
async def test_everyone_is_verified_when_checks_are_off(services):
    await services.config.set("enable_verify", "false")
    await services.config.set("enable_qa_verify", "false")

    await handle_private(make_message("hello"))

    assert (await services.users.get("42")).state is UserState.VERIFIED
    assert "forwardMessage" in services.gateway.methods()


@pytest.mark.asyncio
async def test_blocked_user_is_ignored(services):
    await services.users.get_or_create("42")
    await services.users.update("42", state=UserState.VERIFIED, is_blocked=True)

    await handle_private(make_message("hello"))

    assert services.gateway.calls == []


@pytest.mark.asyncio
async def test_owner_start_opens_panel(services):
    await handle_private(make_message("/start", user_id=int(OWNER_ID)))

    assert "setMyCommands" in services.gateway.methods()
    assert texts_to(services.gateway, OWNER_ID) == [PANEL_TITLE]


@pytest.mark.asyncio
async def test_owner_help(services):
    await handle_private(make_message("/help", user_id=int(OWNER_ID)))
    assert texts_to(services.gateway, OWNER_ID) == [ADMIN_HELP]


@pytest.mark.asyncio
async def test_dispatcher_never_raises(services, monkeypatch):
    async def broken(message):
        raise RuntimeError("boom")

    monkeypatch.setattr("relaybot.flow.handlers.private.handle_private", broken)
    update = Update.model_validate({"update_id": 1, "message": make_message("hi").model_dump(by_alias=True, exclude_none=True)})

    await handle_update(update)


# ---------------------------------------------------------------------------
# Captcha
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_turnstile_token_is_posted_as_json(bot_settings, monkeypatch):
    monkeypatch.setattr(bot_settings, "TURNSTILE_SECRET_KEY", "secret")
    seen = {}

    assert await verify_captcha_token("tok", "turnstile", captcha_transport(True, seen))
    assert "turnstile" in seen["url"]
    assert seen["content_type"].startswith("application/json")
    assert json.loads(seen["body"]) == {"secret": "secret", "response": "tok"}


@pytest.mark.asyncio
async def test_recaptcha_token_is_posted_as_form(bot_settings, monkeypatch):
    monkeypatch.setattr(bot_settings, "RECAPTCHA_SECRET_KEY", "secret")
    seen = {}

    assert not await verify_captcha_token("tok", "recaptcha", captcha_transport(False, seen))
    assert "recaptcha" in seen["url"]
    assert seen["content_type"].startswith("application/x-www-form-urlencoded")
    assert "response=tok" in seen["body"]


@pytest.mark.asyncio
async def test_unreachable_provider_rejects():
    def handler(request):
        raise httpx.ConnectError("down", request=request)

    assert not await verify_captcha_token("tok", "turnstile", httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_passed_captcha_moves_to_question(services):
    assert await submit_captcha_token("tok", "42", captcha_transport(True))

    assert (await services.users.get("42")).state is UserState.PENDING_VERIFICATION
    assert "1+1=?" in texts_to(services.gateway)[0]


@pytest.mark.asyncio
async def test_passed_captcha_verifies_without_question(services):
    await services.config.set("enable_qa_verify", "false")

    assert await submit_captcha_token("tok", "42", captcha_transport(True))

    assert (await services.users.get("42")).state is UserState.VERIFIED
    assert texts_to(services.gateway) == [VERIFIED_MESSAGE]


@pytest.mark.asyncio
async def test_failed_or_missing_token(services):
    assert not await submit_captcha_token("tok", "42", captcha_transport(False))
    assert not await submit_captcha_token(None, "42")
    assert not await submit_captcha_token("tok", None)
    assert await services.users.get("42") is None


@pytest.mark.asyncio
async def test_verify_page(services, bot_settings, monkeypatch):
    assert await render_verify_page("42") is None

    monkeypatch.setattr(bot_settings, "TURNSTILE_SITE_KEY", "site-key")
    page = await render_verify_page("42")
    assert 'data-sitekey="site-key"' in page
    assert "cf-turnstile" in page
    assert 'userId: "42"' in page
    assert await render_verify_page(None) is None
