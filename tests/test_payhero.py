import pytest
import requests

from payhero import PayHeroError, send_stk_push
from settings import Settings

CONFIGURED = Settings(
    database_url="x",
    payhero_username="user",
    payhero_password="secret",
    payhero_channel_id="911",
    payhero_callback_url="https://example.com/api/callback",
    payhero_api_base="https://payhero.test/api/v2",
)


class FakeResponse:
    def __init__(self, status_code=200, payload=None, text=""):
        self.status_code = status_code
        self._payload = payload
        self.text = text

    def json(self):
        if self._payload is None:
            raise ValueError("no json")
        return self._payload


class FakeSession:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.calls = []

    def post(self, url, **kwargs):
        self.calls.append((url, kwargs))
        if self.error:
            raise self.error
        return self.response


def push(session, settings=CONFIGURED):
    return send_stk_push(
        settings,
        external_reference="bob-001",
        amount=100,
        phone_number="0700000000",
        session=session,
    )


def test_sends_payment_request():
    session = FakeSession(FakeResponse(payload={"success": True, "reference": "abc"}))
    assert push(session)["reference"] == "abc"

    url, kwargs = session.calls[0]
    assert url == "https://payhero.test/api/v2/payments"
    assert kwargs["auth"] == ("user", "secret")
    assert kwargs["json"] == {
        "amount": 100,
        "phone_number": "0700000000",
        "channel_id": "911",
        "provider": "m-pesa",
        "external_reference": "bob-001",
        "callback_url": "https://example.com/api/callback",
    }


def test_missing_configuration():
    with pytest.raises(PayHeroError) as excinfo:
        push(FakeSession(), settings=Settings(database_url="x"))
    assert excinfo.value.status_code == 503


@pytest.mark.parametrize(
    "session",
    [
        FakeSession(error=requests.ConnectionError("down")),
        FakeSession(FakeResponse(status_code=401, text="unauthorized")),
        FakeSession(FakeResponse(payload={"success": False})),
        FakeSession(FakeResponse(payload=None)),
    ],
)
def test_gateway_failures(session):
    with pytest.raises(PayHeroError) as excinfo:
        push(session)
    assert excinfo.value.status_code == 502
