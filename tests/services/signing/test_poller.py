from __future__ import annotations

import threading

import pytest
from cryptography import x509
from cryptography.x509.oid import NameOID

from certsigner.services.crypto.pki import generate_ec_key
from certsigner.services.errors import (
    PollCancelledError,
    PollTimeoutError,
    RequestRejectedError,
    SigningServiceError,
    SigningServiceUnavailable,
)
from certsigner.services.signing.poller import Poller


class ScriptedClient:
    """Replays a list of outcomes: ``None`` for pending, an exception, or a chain."""

    def __init__(self, outcomes):
        self.outcomes = list(outcomes)
        self.calls = 0

    def submit(self, csr: bytes) -> str:
        raise AssertionError("poller must not submit")

    def retrieve(self, request_id: str):
        self.calls += 1
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


@pytest.fixture()
def chain(chain_factory):
    subject = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "Test LLC")])
    return chain_factory(generate_ec_key().public_key(), subject)


@pytest.mark.parametrize("pending", [0, 1, 3])
def test_polls_until_chain_is_returned(poller, sleeper, chain, pending):
    client = ScriptedClient([None] * pending + [chain])

    assert poller.await_approval("req-42", client) == chain
    assert client.calls == pending + 1
    assert sleeper.calls == [60.0] * pending


def test_rejection_is_terminal(poller, sleeper):
    client = ScriptedClient([None, RequestRejectedError("no", request_id="req-42")])
    with pytest.raises(RequestRejectedError):
        poller.await_approval("req-42", client)
    assert client.calls == 2
    assert sleeper.calls == [60.0]


def test_transport_and_server_errors_are_retried(poller, sleeper, chain):
    client = ScriptedClient(
        [SigningServiceUnavailable("connection refused"), SigningServiceError("boom", status_code=503), chain]
    )
    assert poller.await_approval("req-42", client) == chain
    assert sleeper.calls == [60.0, 60.0]


def test_client_errors_are_not_retried(poller, sleeper):
    client = ScriptedClient([SigningServiceError("forbidden", status_code=403)])
    with pytest.raises(SigningServiceError):
        poller.await_approval("req-42", client)
    assert sleeper.calls == []


def test_timeout_bounds_total_wait():
    clock = FakeClock()
    waits: list[float] = []

    def sleep(seconds: float) -> None:
        waits.append(seconds)
        clock.now += seconds

    poller = Poller(interval=60.0, timeout=150.0, sleep=sleep, clock=clock)
    client = ScriptedClient([None] * 10)

    with pytest.raises(PollTimeoutError):
        poller.await_approval("req-42", client)
    assert waits == [60.0, 60.0, 30.0]
    assert client.calls == 4


def test_cancel_event_stops_polling(chain):
    cancel = threading.Event()

    class CancellingClient(ScriptedClient):
        def retrieve(self, request_id: str):
            cancel.set()
            return super().retrieve(request_id)

    client = CancellingClient([None, chain])
    with pytest.raises(PollCancelledError):
        Poller(interval=60.0).await_approval("req-42", client, cancel=cancel)
    assert client.calls == 1


def test_already_cancelled_event_skips_retrieve():
    cancel = threading.Event()
    cancel.set()
    client = ScriptedClient([])
    with pytest.raises(PollCancelledError):
        Poller().await_approval("req-42", client, cancel=cancel)
    assert client.calls == 0


@pytest.mark.parametrize("kwargs", [{"interval": 0}, {"interval": -1}, {"timeout": -5}])
def test_invalid_settings_are_rejected(kwargs):
    with pytest.raises(ValueError):
        Poller(**kwargs)
