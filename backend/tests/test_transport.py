from types import SimpleNamespace

import pytest
from telegram import InlineKeyboardMarkup
from telegram.constants import ParseMode
from telegram.error import BadRequest, Forbidden, TelegramError

from dompet.domain.callbacks import Menu
from dompet.errors import TransportError
from dompet.render import Button, Render, back_only
from dompet.transport import EditOutcome, TelegramTransport, to_markup

ME = "42"


class StubBot:
    """Stands in for ``telegram.Bot``; each method raises its configured error."""

    def __init__(self, **errors):
        self.errors = errors
        self.calls = []

    async def _call(self, name, result, **kwargs):
        self.calls.append((name, kwargs))
        if name in self.errors:
            raise self.errors[name]
        return result

    async def send_message(self, **kwargs):
        return await self._call("send_message", SimpleNamespace(message_id=77), **kwargs)

    async def edit_message_text(self, **kwargs):
        return await self._call("edit_message_text", True, **kwargs)

    async def delete_message(self, **kwargs):
        return await self._call("delete_message", True, **kwargs)

    async def answer_callback_query(self, callback_id, **kwargs):
        return await self._call("answer_callback_query", True, callback_id=callback_id, **kwargs)


MENU = Render("📋 *Menu*", back_only(Menu.MAIN))


@pytest.mark.asyncio
async def test_send_returns_message_id_with_markdown_and_keyboard():
    bot = StubBot()
    assert await TelegramTransport(bot).send_message(ME, MENU) == 77
    [(_, kwargs)] = bot.calls
    assert kwargs["chat_id"] == ME
    assert kwargs["parse_mode"] == ParseMode.MARKDOWN
    assert isinstance(kwargs["reply_markup"], InlineKeyboardMarkup)


@pytest.mark.asyncio
@pytest.mark.parametrize("error", [Forbidden("bot was blocked by the user"), TelegramError("boom")])
async def test_send_failure_raises_transport_error(error):
    with pytest.raises(TransportError):
        await TelegramTransport(StubBot(send_message=error)).send_message(ME, MENU)


@pytest.mark.asyncio
async def test_successful_edit():
    assert await TelegramTransport(StubBot()).edit_message(ME, 5, MENU) == EditOutcome.EDITED


@pytest.mark.asyncio
async def test_identical_content_counts_as_unchanged():
    error = BadRequest("Message is not modified: specified new message content is exactly the same")
    outcome = await TelegramTransport(StubBot(edit_message_text=error)).edit_message(ME, 5, MENU)
    assert outcome == EditOutcome.UNCHANGED


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "error",
    [BadRequest("Message to edit not found"), Forbidden("bot was kicked"), TelegramError("network down")],
)
async def test_other_edit_errors_fail(error):
    outcome = await TelegramTransport(StubBot(edit_message_text=error)).edit_message(ME, 5, MENU)
    assert outcome == EditOutcome.FAILED


@pytest.mark.asyncio
async def test_delete_reports_success():
    bot = StubBot()
    assert await TelegramTransport(bot).delete_message(ME, 9) is True
    assert bot.calls == [("delete_message", {"chat_id": ME, "message_id": 9})]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "error", [BadRequest("Message can't be deleted"), Forbidden("not enough rights"), TelegramError("x")]
)
async def test_delete_failure_returns_false(error):
    assert await TelegramTransport(StubBot(delete_message=error)).delete_message(ME, 9) is False


@pytest.mark.asyncio
async def test_callback_acknowledgement_never_raises():
    bot = StubBot(answer_callback_query=BadRequest("Query is too old"))
    await TelegramTransport(bot).acknowledge_callback("cb-1", "Akses ditolak", alert=True)
    [(_, kwargs)] = bot.calls
    assert kwargs == {"callback_id": "cb-1", "text": "Akses ditolak", "show_alert": True}


def test_markup_uses_callback_tokens_and_urls():
    keyboard = ((Button("🌐 Dashboard", url="https://dompet.example"),), *back_only(Menu.MAIN))
    markup = to_markup(keyboard)
    url_button = markup.inline_keyboard[0][0]
    back_button = markup.inline_keyboard[1][0]
    assert url_button.url == "https://dompet.example"
    assert back_button.callback_data == "back_main"


def test_empty_keyboard_has_no_markup():
    assert to_markup(()) is None
