import re

import pytest
from fastapi.testclient import TestClient

from dompet.config import get_settings
from dompet.main import app
from dompet.services import build_services
from dompet.transaction_parser import HeuristicTransactionParser

CHAT_ID = "42"


class RecordingTransport:
    def __init__(self):
        self.sent = []

    async def send_message(self, identity, render):
        self.sent.append((identity, render))
        return len(self.sent)

    async def edit_message(self, identity, message_id, render):
        raise AssertionError("no live message in these tests")

    async def delete_message(self, identity, message_id):
        return True

    async def acknowledge_callback(self, callback_id, text=None, alert=False):
        return None


@pytest.fixture()
def transport():
    return RecordingTransport()


@pytest.fixture()
def settings():
    return get_settings().model_copy(update={"telegram_allowed_user": "owner"})


@pytest.fixture()
def client(settings, session_factory, seeded_store, transport):
    seeded_store.register_profile("owner", CHAT_ID, "Owner")
    app.state.services = build_services(
        settings,
        transport=transport,
        session_factory=session_factory,
        parser=HeuristicTransactionParser(),
    )
    yield TestClient(app)
    del app.state.services


def delivered_code(transport):
    identity, render = transport.sent[-1]
    assert identity == CHAT_ID
    return re.search(r"`(\d+)`", render.text).group(1)


def login(client, transport):
    assert client.post("/api/auth/request-otp", json={"username": "@Owner"}).status_code == 200
    response = client.post(
        "/api/auth/verify-otp", json={"username": "owner", "code": delivered_code(transport)}
    )
    assert response.status_code == 200
    return response.json()["access_token"]


def test_health_check(client):
    assert client.get("/").json() == {"status": "ok"}


def test_request_otp_delivers_code_over_chat(client, transport):
    response = client.post("/api/auth/request-otp", json={"username": "owner"})
    assert response.status_code == 200
    body = response.json()
    assert body["is_existing"] is False
    assert body["remaining_daily"] == 9
    assert "Kode Login Dashboard" in transport.sent[0][1].text


def test_repeat_request_reuses_code_until_burst_cap(client, transport):
    for _ in range(3):
        assert client.post("/api/auth/request-otp", json={"username": "owner"}).status_code == 200
    codes = {re.search(r"`(\d+)`", render.text).group(1) for _, render in transport.sent}
    assert len(codes) == 1

    response = client.post("/api/auth/request-otp", json={"username": "owner"})
    assert response.status_code == 429
    detail = response.json()["detail"]
    assert detail["reason"] == "burst_cap"
    assert detail["remaining_daily"] == 7
    assert 0 < detail["wait_seconds"] <= 15 * 60


def test_unknown_username_is_404(client):
    response = client.post("/api/auth/request-otp", json={"username": "stranger"})
    assert response.status_code == 404


def test_wrong_code_reports_attempts_left(client, transport):
    client.post("/api/auth/request-otp", json={"username": "owner"})
    code = delivered_code(transport)
    wrong = "000000" if code != "000000" else "111111"
    response = client.post("/api/auth/verify-otp", json={"username": "owner", "code": wrong})
    assert response.status_code == 401
    assert response.json()["detail"]["reason"] == "wrong_code"
    assert response.json()["detail"]["attempts_left"] == 2


def test_verify_without_code_is_401(client):
    response = client.post("/api/auth/verify-otp", json={"username": "owner", "code": "123456"})
    assert response.status_code == 401
    assert response.json()["detail"]["reason"] == "not_found"


def test_state_requires_session_token(client, transport):
    assert client.get("/api/state").status_code == 401
    assert client.get("/api/state", headers={"Authorization": "Bearer nonsense"}).status_code == 401

    token = login(client, transport)
    response = client.get("/api/state", headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == 200
    body = response.json()
    assert {account["name"] for account in body["accounts"]} == {"BCA", "Gopay"}
    assert body["transactions"] == []
    assert "Salary" in {category["name"] for category in body["categories"]}


def test_login_also_authenticates_chat_session(client, transport):
    login(client, transport)
    assert app.state.services.sessions.is_valid(CHAT_ID)


def test_clear_all_wipes_records_but_keeps_categories(client, transport, seeded_store):
    token = login(client, transport)
    response = client.post("/api/data/clear-all", headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == 200
    assert response.json() == {"cleared": True}
    assert seeded_store.get_accounts() == []
    assert seeded_store.get_categories() != []


def test_webhook_feeds_dispatcher(client, transport, seeded_store):
    payload = {
        "update_id": 1,
        "message": {
            "message_id": 5,
            "date": 1741575600,
            "chat": {"id": 42, "type": "private"},
            "from": {"id": 42, "is_bot": False, "first_name": "Owner", "username": "owner"},
            "text": "Beli kopi 25rb BCA",
        },
    }
    response = client.post("/api/telegram/webhook", json=payload)
    assert response.status_code == 200
    assert seeded_store.get_account_by_name("BCA").balance == 975_000
    assert "Tercatat" in transport.sent[-1][1].text


def test_webhook_without_bot_is_503(settings, session_factory):
    app.state.services = build_services(settings, session_factory=session_factory, parser=HeuristicTransactionParser())
    try:
        response = TestClient(app).post("/api/telegram/webhook", json={"update_id": 1})
        assert response.status_code == 503
    finally:
        del app.state.services


def test_request_otp_without_bot_is_503(settings, session_factory, seeded_store):
    seeded_store.register_profile("owner", CHAT_ID)
    app.state.services = build_services(settings, session_factory=session_factory, parser=HeuristicTransactionParser())
    try:
        response = TestClient(app).post("/api/auth/request-otp", json={"username": "owner"})
        assert response.status_code == 503
    finally:
        del app.state.services


def auth(token):
    return {"Authorization": f"Bearer {token}"}


def test_chat_command_records_transaction(client, transport, seeded_store):
    assert client.post("/api/telegram/command", json={"message": "Beli kopi 25rb BCA"}).status_code == 401

    token = login(client, transport)
    response = client.post("/api/telegram/command", json={"message": "Beli kopi 25rb BCA"}, headers=auth(token))
    assert response.status_code == 200
    body = response.json()
    assert body["parsed"]["account_name"] == "BCA"
    assert body["transaction"]["amount"] == 25_000
    assert body["transaction"]["category"] == "Food"
    balances = {account["name"]: account["balance"] for account in body["accounts"]}
    assert balances["BCA"] == 975_000
    assert seeded_store.get_account_by_name("BCA").balance == 975_000


def test_chat_command_charges_budget(client, transport, seeded_store):
    seeded_store.add_budget("Food", 100_000)
    token = login(client, transport)
    response = client.post("/api/telegram/command", json={"message": "Makan bakso 30rb Gopay"}, headers=auth(token))
    assert [budget["spent"] for budget in response.json()["budgets"]] == [30_000]


def test_chat_command_rejects_unparsable_text(client, transport):
    token = login(client, transport)
    response = client.post("/api/telegram/command", json={"message": "halo"}, headers=auth(token))
    assert response.status_code == 422


def test_chat_command_unknown_account_is_400(client, transport, seeded_store):
    token = login(client, transport)
    response = client.post("/api/telegram/command", json={"message": "Beli kopi 25rb Mandiri"}, headers=auth(token))
    assert response.status_code == 400
    assert "Mandiri" in response.json()["detail"]
    assert seeded_store.get_transactions() == []


def test_clear_transactions_keeps_accounts_and_balances(client, transport, seeded_store):
    token = login(client, transport)
    client.post("/api/telegram/command", json={"message": "Beli kopi 25rb BCA"}, headers=auth(token))
    client.post("/api/telegram/command", json={"message": "Gaji 1jt ke Gopay"}, headers=auth(token))

    assert client.post("/api/data/clear-transactions").status_code == 401
    response = client.post("/api/data/clear-transactions", headers=auth(token))
    assert response.status_code == 200
    assert response.json() == {"removed": 2}
    assert seeded_store.get_transactions() == []
    assert seeded_store.get_account_by_name("BCA").balance == 975_000
    assert seeded_store.get_account_by_name("Gopay").balance == 1_200_000


@pytest.fixture()
def secured_client(settings, session_factory, seeded_store, transport):
    secured = settings.model_copy(update={"telegram_webhook_secret": "s3cret-token"})
    app.state.services = build_services(
        secured, transport=transport, session_factory=session_factory, parser=HeuristicTransactionParser()
    )
    yield TestClient(app)
    del app.state.services


def test_webhook_secret_is_enforced(secured_client, seeded_store):
    payload = {
        "update_id": 2,
        "message": {
            "message_id": 6,
            "date": 1741575600,
            "chat": {"id": 42, "type": "private"},
            "from": {"id": 42, "is_bot": False, "first_name": "Owner", "username": "owner"},
            "text": "Beli kopi 25rb BCA",
        },
    }
    assert secured_client.post("/api/telegram/webhook", json=payload).status_code == 403
    wrong = {"X-Telegram-Bot-Api-Secret-Token": "guess"}
    assert secured_client.post("/api/telegram/webhook", json=payload, headers=wrong).status_code == 403
    assert seeded_store.get_transactions() == []

    right = {"X-Telegram-Bot-Api-Secret-Token": "s3cret-token"}
    assert secured_client.post("/api/telegram/webhook", json=payload, headers=right).status_code == 200
    assert seeded_store.get_account_by_name("BCA").balance == 975_000
