import asyncio
import json
import logging

import pytest

from crash_rocket.app import build_channel
from crash_rocket.reporting import LoggingChannel, TelegramChannel, encode_report

REPORT = {
    "kind": "crash_v1",
    "bet": 10.0,
    "auto_x100": 200,
    "cashed_out": True,
    "cashout_ms": 1466,
    "crash_x100": 355,
}


class FakeBot:
    instances = []

    def __init__(self, token):
        self.token = token
        self.calls = []
        FakeBot.instances.append(self)

    async def initialize(self):
        self.calls.append(("initialize",))

    async def send_message(self, chat_id, text):
        self.calls.append(("send_message", chat_id, text))

    async def shutdown(self):
        self.calls.append(("shutdown",))


@pytest.fixture
def fake_bot(monkeypatch):
    FakeBot.instances = []
    monkeypatch.setattr("telegram.Bot", FakeBot)
    return FakeBot


def test_encode_report_is_compact_json():
    text = encode_report(REPORT)
    assert " " not in text
    assert json.loads(text) == REPORT


def test_telegram_channel_sends_compact_json_to_chat(fake_bot):
    async def scenario():
        channel = TelegramChannel("123:abc", "-100777")
        await channel.send(REPORT)
        await channel.send({**REPORT, "cashed_out": False})
        await channel.close()
        return channel

    asyncio.run(scenario())

    assert len(fake_bot.instances) == 1
    bot = fake_bot.instances[0]
    assert bot.token == "123:abc"
    assert [c[0] for c in bot.calls] == ["initialize", "send_message", "send_message", "shutdown"]

    _, chat_id, text = bot.calls[1]
    assert chat_id == "-100777"
    assert text == '{"kind":"crash_v1","bet":10.0,"auto_x100":200,"cashed_out":true,"cashout_ms":1466,"crash_x100":355}'
    assert json.loads(bot.calls[2][2])["cashed_out"] is False


def test_telegram_channel_start_is_idempotent(fake_bot):
    async def scenario():
        channel = TelegramChannel("123:abc", 42)
        await channel.start()
        await channel.start()
        await channel.send(REPORT)
        await channel.close()
        await channel.close()

    asyncio.run(scenario())

    calls = [c[0] for c in fake_bot.instances[0].calls]
    assert calls.count("initialize") == 1
    assert calls.count("shutdown") == 1
    assert fake_bot.instances[0].calls[1][1] == 42


def test_telegram_channel_close_without_start_skips_shutdown(fake_bot):
    asyncio.run(TelegramChannel("123:abc", 42).close())
    assert fake_bot.instances[0].calls == []


def test_logging_channel_logs_payload(caplog):
    with caplog.at_level(logging.INFO, logger="crash_rocket.reporting"):
        asyncio.run(LoggingChannel().send(REPORT))
    assert f"payload: {encode_report(REPORT)}" in caplog.text


def test_build_channel_uses_telegram_when_configured(monkeypatch, fake_bot):
    monkeypatch.setenv("BOT_TOKEN", "123:abc")
    monkeypatch.setenv("REPORT_CHAT_ID", "-100777")
    channel = build_channel()
    assert isinstance(channel, TelegramChannel)
    assert fake_bot.instances[0].token == "123:abc"


@pytest.mark.parametrize(
    "env",
    [
        {},
        {"BOT_TOKEN": "123:abc"},
        {"REPORT_CHAT_ID": "-100777"},
        {"BOT_TOKEN": "", "REPORT_CHAT_ID": "-100777"},
    ],
)
def test_build_channel_falls_back_to_log(monkeypatch, fake_bot, env):
    monkeypatch.delenv("BOT_TOKEN", raising=False)
    monkeypatch.delenv("REPORT_CHAT_ID", raising=False)
    for key, value in env.items():
        monkeypatch.setenv(key, value)
    assert isinstance(build_channel(), LoggingChannel)
    assert fake_bot.instances == []
