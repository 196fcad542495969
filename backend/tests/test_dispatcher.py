import asyncio

import pytest

from dompet.dispatcher import CallbackEvent, Dispatcher, TextEvent
from dompet.domain.flows import AddGoal
from dompet.errors import TransportError
from dompet.transport import EditOutcome

ME = "42"


class FakeTransport:
    def __init__(self):
        self.sent = []
        self.edited = []
        self.deleted = []
        self.acknowledged = []
        self.edit_outcome = EditOutcome.EDITED
        self.fail_send = False
        self.slow = False
        self.delete_ok = True
        self._next_id = 100

    async def send_message(self, identity, render):
        if self.fail_send:
            raise TransportError("chat not found")
        self._next_id += 1
        self.sent.append((identity, self._next_id, render))
        return self._next_id

    async def edit_message(self, identity, message_id, render):
        if self.slow:
            await asyncio.sleep(1)
        self.edited.append((identity, message_id, render))
        return self.edit_outcome

    async def delete_message(self, identity, message_id):
        self.deleted.append((identity, message_id))
        return self.delete_ok

    async def acknowledge_callback(self, callback_id, text=None, alert=False):
        self.acknowledged.append((callback_id, text, alert))


@pytest.fixture()
def transport():
    return FakeTransport()


@pytest.fixture()
def dispatcher(conversation, transport):
    return Dispatcher(conversation, transport, allowed_user="Owner", timeout_seconds=0.2)


def text(message, message_id=1, username="owner"):
    return TextEvent(identity=ME, message_id=message_id, text=message, username=username, first_name="Owner")


def press(token, message_id=101, username="owner"):
    return CallbackEvent(identity=ME, message_id=message_id, token=token, username=username, callback_id="cb-1")


@pytest.mark.asyncio
async def test_first_text_sends_and_remembers_message(dispatcher, transport):
    await dispatcher.dispatch(text("/start"))
    assert transport.deleted == [(ME, 1)]
    [(identity, message_id, render)] = transport.sent
    assert "DOMPET" in render.text
    assert dispatcher.conversations.peek(ME).last_message_id == message_id


@pytest.mark.asyncio
async def test_next_turn_edits_live_message(dispatcher, transport):
    await dispatcher.dispatch(text("/start"))
    await dispatcher.dispatch(text("/saldo", message_id=2))
    assert len(transport.sent) == 1
    [(_, edited_id, render)] = transport.edited
    assert edited_id == 101
    assert "Saldo" in render.text


@pytest.mark.asyncio
async def test_failed_edit_falls_back_to_delete_and_send(dispatcher, transport):
    await dispatcher.dispatch(text("/start"))
    transport.edit_outcome = EditOutcome.FAILED
    await dispatcher.dispatch(text("/saldo", message_id=2))
    assert (ME, 101) in transport.deleted
    assert len(transport.sent) == 2
    assert dispatcher.conversations.peek(ME).last_message_id == 102


@pytest.mark.asyncio
async def test_unchanged_edit_is_not_a_failure(dispatcher, transport):
    await dispatcher.dispatch(text("/start"))
    transport.edit_outcome = EditOutcome.UNCHANGED
    await dispatcher.dispatch(text("/start", message_id=2))
    assert len(transport.sent) == 1


@pytest.mark.asyncio
async def test_callback_flow_state_survives_between_events(dispatcher, transport, seeded_store):
    await dispatcher.dispatch(press("goal_add"))
    assert transport.acknowledged == [("cb-1", None, False)]
    assert dispatcher.conversations.peek(ME).flow == AddGoal()
    assert dispatcher.conversations.peek(ME).last_message_id == 101

    await dispatcher.dispatch(text("Rumah", message_id=5))
    assert dispatcher.conversations.peek(ME).flow == AddGoal(name="Rumah")

    await dispatcher.dispatch(press("back_goals"))
    assert dispatcher.conversations.peek(ME).flow is None


@pytest.mark.asyncio
async def test_unauthorized_text_is_refused_without_side_effects(dispatcher, transport, seeded_store):
    await dispatcher.dispatch(text("Beli kopi 25rb BCA", username="stranger"))
    [(_, _, render)] = transport.sent
    assert "Akses ditolak" in render.text
    assert transport.deleted == []
    assert seeded_store.get_transactions() == []
    assert dispatcher.conversations.peek(ME) is None
    assert seeded_store.get_chat_id_by_username("stranger") is None


@pytest.mark.asyncio
async def test_unauthorized_callback_gets_alert(dispatcher, transport):
    await dispatcher.dispatch(press("menu_balance", username=None))
    [(callback_id, message, alert)] = transport.acknowledged
    assert alert is True
    assert "Akses ditolak" in message
    assert transport.edited == [] and transport.sent == []


def test_allowed_chat_id_is_enough(conversation, transport):
    dispatcher = Dispatcher(conversation, transport, allowed_chat_id=ME)
    assert dispatcher.is_authorized(ME, None)
    assert not dispatcher.is_authorized("7", "owner")


def test_username_match_is_case_insensitive(dispatcher):
    assert dispatcher.is_authorized("7", "@OWNER")
    assert not dispatcher.is_authorized("7", None)


@pytest.mark.asyncio
async def test_profile_is_registered_from_authorized_text(dispatcher, seeded_store):
    await dispatcher.dispatch(text("/start"))
    assert seeded_store.get_chat_id_by_username("@Owner") == ME


@pytest.mark.asyncio
async def test_unexpected_error_renders_generic_failure(dispatcher, transport, monkeypatch):
    def explode(*args, **kwargs):
        raise RuntimeError("boom")

    monkeypatch.setattr(dispatcher.engine, "handle_text", explode)
    await dispatcher.dispatch(text("/start"))
    [(_, _, render)] = transport.sent
    assert "Terjadi kesalahan" in render.text


@pytest.mark.asyncio
async def test_transport_failures_do_not_escape(dispatcher, transport):
    transport.fail_send = True
    await dispatcher.dispatch(text("/start"))
    assert dispatcher.conversations.peek(ME).last_message_id is None


@pytest.mark.asyncio
async def test_slow_edit_times_out_and_sends_fresh_message(dispatcher, transport):
    await dispatcher.dispatch(text("/start"))
    transport.slow = True
    await dispatcher.dispatch(text("/saldo", message_id=2))
    assert len(transport.sent) == 2


@pytest.mark.asyncio
async def test_concurrent_events_for_one_identity_are_serialised(dispatcher, transport, seeded_store):
    await asyncio.gather(*(dispatcher.dispatch(text("Beli kopi 10rb BCA", message_id=i)) for i in range(5)))
    assert len(seeded_store.get_transactions()) == 5
    assert seeded_store.get_account_by_name("BCA").balance == 950_000
    assert len(transport.sent) == 1


@pytest.mark.asyncio
async def test_failed_inbound_delete_still_delivers_render(dispatcher, transport, seeded_store):
    transport.delete_ok = False
    await dispatcher.dispatch(text("Beli kopi 25rb BCA"))
    assert transport.deleted == [(ME, 1)]
    [(_, message_id, render)] = transport.sent
    assert "Tercatat" in render.text
    assert dispatcher.conversations.peek(ME).last_message_id == message_id
    assert seeded_store.get_account_by_name("BCA").balance == 975_000


@pytest.mark.asyncio
async def test_failed_delete_of_stale_message_still_sends_fresh_one(dispatcher, transport):
    await dispatcher.dispatch(text("/start"))
    transport.edit_outcome = EditOutcome.FAILED
    transport.delete_ok = False
    await dispatcher.dispatch(text("/saldo", message_id=2))
    assert len(transport.sent) == 2
    assert dispatcher.conversations.peek(ME).last_message_id == 102
