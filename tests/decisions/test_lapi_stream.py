import threading
from typing import Any, List
from unittest.mock import MagicMock

import pytest
import requests

from core.decisions.lapi import LapiClient, to_decisions
from core.decisions.stream import DecisionStream
from schemas.decision import AddressFamily, DecisionAction, DecisionStreamResponse
from utils.errors import ErrorCode
from utils.exceptions import BouncerError, DecisionStreamError


def lapi_item(value: str, type_: str = "ban", scope: str = "Ip", origin: str = "crowdsec") -> dict:
    return {"id": 1, "origin": origin, "type": type_, "scope": scope, "value": value,
            "duration": "3h59m", "scenario": "crowdsecurity/ssh-bf"}


class FakeHttpResponse:
    def __init__(self, status_code: int = 200, body: Any = None):
        self.status_code = status_code
        self._body = body
        self.content = b"{}" if body is not None else b""

    def json(self) -> Any:
        return self._body

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.exceptions.HTTPError(f"{self.status_code} error")


def make_client(get_result, origins=None) -> LapiClient:
    session = MagicMock()
    session.headers = {}
    if isinstance(get_result, Exception):
        session.get.side_effect = get_result
    else:
        session.get.return_value = get_result
    return LapiClient(url="http://lapi:8080/", api_key="bouncer-key", origins=origins,
                      user_agent="cs-unifi-bouncer/test", session=session)


# --- conversion ---
def test_deletions_come_first():
    response = DecisionStreamResponse(new=[lapi_item("1.2.3.4")], deleted=[lapi_item("5.6.7.8")])

    decisions = to_decisions(response)

    assert [(d.action, d.address) for d in decisions] == [
        (DecisionAction.REMOVE, "5.6.7.8"),
        (DecisionAction.ADD, "1.2.3.4"),
    ]
    assert decisions[1].origin == "crowdsec"
    assert decisions[1].scenario == "crowdsecurity/ssh-bf"


def test_unsupported_and_malformed_items_are_skipped():
    response = DecisionStreamResponse(new=[
        lapi_item("1.1.1.1", type_="captcha"),
        lapi_item("FR", scope="Country"),
        lapi_item("not-an-address"),
        {"origin": "crowdsec", "type": "ban"},  # no value
        lapi_item("10.0.0.0/24", scope="Range"),
        lapi_item("2001:db8::1"),
    ])

    decisions = to_decisions(response)

    assert [(d.address, d.family) for d in decisions] == [
        ("10.0.0.0/24", AddressFamily.IPV4),
        ("2001:db8::1", AddressFamily.IPV6),
    ]


def test_null_lists_produce_no_decisions():
    response = DecisionStreamResponse.model_validate({"new": None, "deleted": None})
    assert response.is_empty()
    assert to_decisions(response) == []


# --- client ---
def test_fetch_sends_startup_and_origins():
    client = make_client(FakeHttpResponse(200, {"new": [lapi_item("1.2.3.4")], "deleted": None}),
                         origins=["crowdsec", "cscli"])

    response = client.fetch(startup=True)

    assert len(response.new) == 1
    args, kwargs = client.session.get.call_args
    assert args == ("http://lapi:8080/v1/decisions/stream",)
    assert kwargs["params"] == {"startup": "true", "origins": "crowdsec,cscli"}
    assert client.session.headers["X-Api-Key"] == "bouncer-key"


def test_fetch_without_origins_omits_filter():
    client = make_client(FakeHttpResponse(200, {}))
    client.fetch()
    assert client.session.get.call_args.kwargs["params"] == {"startup": "false"}


@pytest.mark.parametrize("result", [
    requests.exceptions.ConnectionError("refused"),
    FakeHttpResponse(403, {"message": "access forbidden"}),
    FakeHttpResponse(200, ["not", "an", "object"]),
])
def test_fetch_failures_raise_stream_request_failed(result):
    client = make_client(result)
    with pytest.raises(BouncerError) as exc_info:
        client.fetch()
    assert exc_info.value.error_code == "STREAM_REQUEST_FAILED"


# --- stream ---
class ScriptedClient:
    """Replays a list of responses or errors, then cancels the stream."""

    def __init__(self, script: List[Any], cancel_event: threading.Event):
        self.script = list(script)
        self.cancel_event = cancel_event
        self.startup_flags: List[bool] = []

    def fetch(self, startup: bool = False) -> DecisionStreamResponse:
        self.startup_flags.append(startup)
        if not self.script:
            self.cancel_event.set()
            return DecisionStreamResponse()
        item = self.script.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


def stream_error() -> BouncerError:
    return BouncerError(ErrorCode.STREAM_REQUEST_FAILED, override_message="lapi down")


def test_stream_delivers_non_empty_batches():
    cancel = threading.Event()
    client = ScriptedClient([
        DecisionStreamResponse(new=[lapi_item("1.2.3.4")]),
        DecisionStreamResponse(),
        DecisionStreamResponse(deleted=[lapi_item("1.2.3.4")]),
    ], cancel)
    stream = DecisionStream(client, interval=0, cancel_event=cancel)
    batches = []

    stream.run(batches.append)

    assert [[(d.action, d.address) for d in batch] for batch in batches] == [
        [(DecisionAction.ADD, "1.2.3.4")],
        [(DecisionAction.REMOVE, "1.2.3.4")],
    ]
    assert stream.batches_delivered == 2


def test_startup_flag_kept_until_first_success():
    cancel = threading.Event()
    client = ScriptedClient([stream_error(), DecisionStreamResponse(), DecisionStreamResponse()], cancel)
    stream = DecisionStream(client, interval=0, cancel_event=cancel)

    stream.run(lambda batch: None)

    assert client.startup_flags == [True, True, False, False]


def test_stream_halts_after_consecutive_failures():
    cancel = threading.Event()
    client = ScriptedClient([stream_error()] * 5, cancel)
    stream = DecisionStream(client, interval=0, max_consecutive_failures=3, cancel_event=cancel)

    with pytest.raises(DecisionStreamError) as exc_info:
        stream.run(lambda batch: None)
    assert exc_info.value.error_code == "STREAM_HALTED"
    assert len(client.startup_flags) == 3


def test_success_resets_failure_count():
    cancel = threading.Event()
    client = ScriptedClient([stream_error(), DecisionStreamResponse(), stream_error(), stream_error()], cancel)
    stream = DecisionStream(client, interval=0, max_consecutive_failures=3, cancel_event=cancel)

    stream.run(lambda batch: None)

    assert len(client.startup_flags) == 5


def test_cancelled_stream_returns_immediately():
    cancel = threading.Event()
    cancel.set()
    client = ScriptedClient([], cancel)
    DecisionStream(client, interval=0, cancel_event=cancel).run(lambda batch: None)
    assert client.startup_flags == []
