from fastapi.testclient import TestClient

from commtest.models import Role, WSMessage, p2p_message, replace_sellers, show_current_peers
from commtest.stub_peer import create_app, handle_command, handle_p2p, parse_args


def exchange(role: Role, path: str, payload: str) -> dict:
    with TestClient(create_app(role)) as client:
        with client.websocket_connect(path) as websocket:
            websocket.send_text(payload)
            return websocket.receive_json()


def test_show_current_peers_over_commands_channel():
    reply = exchange(Role.SELLER, "/seller/commands", show_current_peers().to_wire())
    assert reply["type"] == "currentPeers"
    assert reply["data"]["role"] == "seller"
    assert isinstance(reply["timestamp"], int)


def test_p2p_channel_acknowledges_addressed_messages():
    reply = exchange(Role.BUYER, "/buyer/p2p", p2p_message("hi", "02abc").to_wire())
    assert reply["type"] == "success"
    assert "02abc" in reply["data"]


def test_p2p_without_recipient_is_an_error():
    reply = exchange(Role.SELLER, "/seller/p2p", WSMessage(type="p2p", data="hi").to_wire())
    assert reply["type"] == "error"
    assert reply["error"] == "MISSING_PUBLIC_KEY"


def test_malformed_json_is_reported():
    reply = exchange(Role.SELLER, "/seller/commands", "{not json")
    assert reply["error"] == "PARSE_ERROR"


def test_one_connection_serves_several_requests():
    with TestClient(create_app(Role.BUYER)) as client:
        with client.websocket_connect("/buyer/commands") as websocket:
            for _ in range(3):
                websocket.send_text(show_current_peers().to_wire())
                assert websocket.receive_json()["type"] == "currentPeers"


def test_replace_sellers_is_buyer_only():
    seller_reply = handle_command(Role.SELLER, replace_sellers(["02aa"]))
    assert seller_reply.error == "BUYER_ONLY_OPERATION"

    buyer_reply = handle_command(Role.BUYER, replace_sellers(["02aa", "03bb"]))
    assert buyer_reply.type == "success"
    assert "2 new sellers" in buyer_reply.data


def test_replace_sellers_with_bad_payload():
    reply = handle_command(Role.BUYER, WSMessage(type="replaceSellers", data="not json"))
    assert reply.error == "PARSE_ERROR"


def test_unknown_command():
    reply = handle_command(Role.SELLER, WSMessage(type="reboot"))
    assert reply.type == "error"
    assert reply.error == "UNKNOWN_COMMAND"
    assert handle_p2p(WSMessage(type="p2p", data="x", public_key="k")).type == "success"


def test_accepts_peer_command_line():
    args = parse_args([
        "--port=1355", "--mode=peer", "--buyer-or-seller=buyer",
        "--list-of-sellers-source=env", "--envFile=.buyer-env",
        "--use-local-address", "--ws-port=3002",
    ])
    assert args.role == "buyer"
    assert args.ws_port == 3002
    assert args.env_file == ".buyer-env"
    assert args.use_local_address
