import os

from commtest.config import DEFAULT_BUYER_PUBLIC_KEY, DEFAULT_SELLER_PUBLIC_KEY, Settings
from commtest.models import Role


def test_defaults_match_reference_deployment():
    settings = Settings(_env_file=None)
    assert settings.PEER_COMMAND == ["go", "run", "."]
    assert (settings.SELLER_P2P_PORT, settings.SELLER_WS_PORT) == (1354, 3001)
    assert (settings.BUYER_P2P_PORT, settings.BUYER_WS_PORT) == (1355, 3002)
    assert settings.CONNECT_TIMEOUT == 10.0
    assert settings.RESPONSE_TIMEOUT == 10.0
    assert settings.READY_TIMEOUT == 5.0
    assert "WebSocket server started" in settings.READINESS_SIGNALS
    assert settings.all_ports() == [1354, 3001, 1355, 3002]


def test_role_configs():
    settings = Settings(_env_file=None)
    seller = settings.role_config(Role.SELLER)
    buyer = settings.role_config(Role.BUYER)
    assert seller.public_key == DEFAULT_SELLER_PUBLIC_KEY
    assert buyer.public_key == DEFAULT_BUYER_PUBLIC_KEY
    assert seller.env_file == ".seller-env"
    assert buyer.env_file == ".buyer-env"
    assert buyer.sellers_source == "env"


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("COMMTEST_SELLER_WS_PORT", "4001")
    monkeypatch.setenv("COMMTEST_PEER_COMMAND", '["./peer", "--verbose"]')
    monkeypatch.setenv("commtest_strict", "true")
    settings = Settings(_env_file=None)
    assert settings.SELLER_WS_PORT == 4001
    assert settings.PEER_COMMAND == ["./peer", "--verbose"]
    assert settings.STRICT is True


def test_env_file_paths_are_relative_to_workdir(tmp_path):
    settings = Settings(_env_file=None, PEER_WORKDIR=str(tmp_path))
    seller = settings.role_config(Role.SELLER)
    assert settings.env_file_path(seller) == os.path.join(str(tmp_path), ".seller-env")

    absolute = Settings(_env_file=None, SELLER_ENV_FILE="/etc/peer/seller.env")
    assert absolute.env_file_path(absolute.role_config(Role.SELLER)) == "/etc/peer/seller.env"
