import pytest
from fastapi import WebSocketDisconnect
from fastapi.testclient import TestClient

from sendrecv.relay.server import PROTOCOL_ERROR, create_app


def test_paired_peers_exchange_frames() -> None:
    with TestClient(create_app()) as client, client.websocket_connect("/") as browser:
        browser.send_text("HELLO 1234")
        assert browser.receive_text() == "HELLO"

        with client.websocket_connect("/") as peer:
            peer.send_text("HELLO 42")
            assert peer.receive_text() == "HELLO"

            peer.send_text("SESSION 1234")
            assert peer.receive_text() == "SESSION_OK"

            peer.send_text('{"sdp": {"type": "offer", "sdp": "v=0"}}')
            assert browser.receive_text() == '{"sdp": {"type": "offer", "sdp": "v=0"}}'
            browser.send_text("OFFER_REQUEST")
            assert peer.receive_text() == "OFFER_REQUEST"

        with pytest.raises(WebSocketDisconnect):
            browser.receive_text()


def test_session_errors() -> None:
    client = TestClient(create_app())

    with client.websocket_connect("/") as first:
        first.send_text("HELLO 1")
        assert first.receive_text() == "HELLO"

        first.send_text("SESSION 99")
        assert first.receive_text() == "ERROR peer '99' not found"

        first.send_text("PING")
        assert first.receive_text() == "ERROR unknown command 'PING'"

        first.send_text("SESSIONX 1")
        assert first.receive_text() == "ERROR unknown command 'SESSIONX 1'"

        with client.websocket_connect("/") as second, client.websocket_connect("/") as third:
            second.send_text("HELLO 2")
            assert second.receive_text() == "HELLO"
            third.send_text("HELLO 3")
            assert third.receive_text() == "HELLO"

            second.send_text("SESSION 1")
            assert second.receive_text() == "SESSION_OK"

            third.send_text("SESSION 1")
            assert third.receive_text() == "ERROR peer '1' busy"


@pytest.mark.parametrize("hello", ["HI 1", "HELLO", "HELLO two words"])
def test_invalid_hello_closes_with_protocol_error(hello: str) -> None:
    client = TestClient(create_app())

    with client.websocket_connect("/") as ws:
        ws.send_text(hello)
        with pytest.raises(WebSocketDisconnect) as excinfo:
            ws.receive_text()

    assert excinfo.value.code == PROTOCOL_ERROR


def test_healthz_reports_connected_peers() -> None:
    app = create_app()
    client = TestClient(app)

    assert client.get("/healthz").json() == {"status": "ok", "peers": 0}

    with client.websocket_connect("/") as ws:
        ws.send_text("HELLO 5")
        assert ws.receive_text() == "HELLO"
        assert client.get("/healthz").json() == {"status": "ok", "peers": 1}
        assert list(app.state.relay.peers) == ["5"]
