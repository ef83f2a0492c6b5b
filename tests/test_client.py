"""
Tests for the Telegram Bot API client
"""
import asyncio
import json

import httpx
import pytest

from meerkat.bot.client import TelegramClient
from meerkat.bot.errors import TelegramAPIError
from meerkat.bot.messages import PhotoMessage, TextMessage


class FakeAPI:
    """Bot API stand-in recording requests"""

    def __init__(self, replies):
        self.replies = replies
        self.requests = []

    def __call__(self, request: httpx.Request):
        self.requests.append(request)
        method = request.url.path.rsplit("/", 1)[-1]
        reply = self.replies[method]
        if callable(reply):
            reply = reply(request)
        return httpx.Response(200, json=reply)


def make_client(api):
    return TelegramClient("123:abc", api_url="https://api.test",
                          transport=httpx.MockTransport(api))


class TestTelegramClient:

    def test_empty_token_is_rejected(self):
        with pytest.raises(ValueError):
            TelegramClient("")

    @pytest.mark.asyncio
    async def test_send_text(self):
        api = FakeAPI({'sendMessage': {'ok': True, 'result': {'message_id': 9}}})
        client = make_client(api)

        result = await client.send(TextMessage(chat_id=42, text="hello"))
        await client.close()

        assert result == {'message_id': 9}
        request = api.requests[0]
        assert request.url.path.endswith("/sendMessage")
        assert json.loads(request.content) == {'chat_id': 42, 'text': "hello"}

    @pytest.mark.asyncio
    async def test_send_photo_is_multipart(self, tmp_path):
        photo = tmp_path / "a.jpg"
        photo.write_bytes(b"\xff\xd8jpeg")
        api = FakeAPI({'sendPhoto': {'ok': True, 'result': {}}})
        client = make_client(api)

        with PhotoMessage(chat_id=42, media=photo, caption="file added") as message:
            await client.send(message)
        await client.close()

        request = api.requests[0]
        assert request.headers["Content-Type"].startswith("multipart/form-data")
        assert b"jpeg" in request.content
        assert b"file added" in request.content

    @pytest.mark.asyncio
    async def test_api_error(self):
        api = FakeAPI({'getMe': {'ok': False, 'error_code': 401, 'description': "Unauthorized"}})
        client = make_client(api)

        with pytest.raises(TelegramAPIError) as excinfo:
            await client.get_me()
        await client.close()

        assert excinfo.value.code == 401

    @pytest.mark.asyncio
    async def test_get_updates_advances_offset(self):
        updates = [
            {'update_id': 10, 'message': {'message_id': 1, 'chat': {'id': 42}, 'text': "/ping",
                                          'from': {'username': "alice"}}},
            {'update_id': 11, 'edited_message': {}},
            {'update_id': 12, 'message': {'message_id': 2, 'chat': {'id': 42}, 'photo': []}},
        ]
        api = FakeAPI({'getUpdates': {'ok': True, 'result': updates}})
        client = make_client(api)

        messages = await client.get_updates(timeout=0)
        await client.close()

        assert [m.text for m in messages] == ["/ping"]
        assert messages[0].username == "alice"
        assert client.offset == 13
        assert json.loads(api.requests[0].content)['offset'] == 0

    @pytest.mark.asyncio
    async def test_poll_updates_until_shutdown(self):
        shutdown = asyncio.Event()
        calls = []

        def get_updates(request):
            calls.append(json.loads(request.content)['offset'])
            if len(calls) == 1:
                return {'ok': True, 'result': [
                    {'update_id': 1, 'message': {'chat': {'id': 42}, 'text': "/temp"}},
                ]}
            shutdown.set()
            return {'ok': True, 'result': []}

        client = make_client(FakeAPI({'getUpdates': get_updates}))
        queue = asyncio.Queue()

        await asyncio.wait_for(client.poll_updates(queue, shutdown, retry_interval=0.01), timeout=5)
        await client.close()

        assert calls == [0, 2]
        assert (await queue.get()).command == "/temp"
