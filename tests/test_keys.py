import pytest

from commtest.errors import KeyMaterialError
from commtest.keys import (
    normalize_private_key,
    public_key_from_private,
    read_private_key,
    resolve_public_key,
)
from commtest.models import Role, RoleConfig

# Generator point of secp256k1 (private key 1) and its double (private key 2)
G_COMPRESSED = "0279be667ef9dcbbac55a06295ce870b07029bfcdb2dce28d959f2815b16f81798"
TWO_G_COMPRESSED = "02c6047f9441ed7d6d3045406e95c07cd85c778e4b8cef3ca7abac09b95c709ee5"
KEY_ONE = "00" * 31 + "01"


def test_public_key_of_known_private_keys():
    assert public_key_from_private(KEY_ONE) == G_COMPRESSED
    assert public_key_from_private("00" * 31 + "02") == TWO_G_COMPRESSED


def test_short_keys_are_left_padded():
    assert normalize_private_key("01") == bytes(31) + b"\x01"
    assert public_key_from_private("0x01") == G_COMPRESSED


def test_long_keys_keep_last_32_bytes():
    assert normalize_private_key("ff" + KEY_ONE) == bytes.fromhex(KEY_ONE)


@pytest.mark.parametrize("bad", ["abc", "zz" * 32, "00" * 32])
def test_invalid_private_keys(bad):
    with pytest.raises(KeyMaterialError):
        public_key_from_private(bad)


def test_read_private_key_from_env_file(tmp_path):
    env_file = tmp_path / ".seller-env"
    env_file.write_text(f"hedera_id=0.0.1234\nprivate_key={KEY_ONE}\n")
    assert read_private_key(str(env_file)) == KEY_ONE
    assert read_private_key(str(tmp_path / "missing")) is None


def test_configured_key_wins_unless_derivation_is_forced(tmp_path):
    env_file = tmp_path / ".buyer-env"
    env_file.write_text(f"private_key={KEY_ONE}\n")
    config = RoleConfig(role=Role.BUYER, p2p_port=1, ws_port=2, env_file=str(env_file),
                        public_key="02configured")

    assert resolve_public_key(config, str(env_file)) == "02configured"
    assert resolve_public_key(config, str(env_file), derive=True) == G_COMPRESSED


def test_empty_configured_key_is_derived(tmp_path):
    env_file = tmp_path / ".buyer-env"
    env_file.write_text(f"PRIVATE_KEY={KEY_ONE}\n")
    config = RoleConfig(role=Role.BUYER, p2p_port=1, ws_port=2, env_file=str(env_file))
    assert resolve_public_key(config, str(env_file)) == G_COMPRESSED


def test_missing_private_key_is_an_error(tmp_path):
    config = RoleConfig(role=Role.SELLER, p2p_port=1, ws_port=2, env_file=".seller-env")
    with pytest.raises(KeyMaterialError):
        resolve_public_key(config, str(tmp_path / ".seller-env"))
