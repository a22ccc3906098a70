import json

import pytest

from ticket_lottery.lottery.sources import SecretsEntropy, SeededEntropy, build_entropy
from ticket_lottery.utils.common import derive_address, shorten_address
from ticket_lottery.utils.config import as_bool, get_config_value, load_config


def test_file_and_environment_overrides(tmp_path, monkeypatch):
    path = tmp_path / "lottery.conf"
    path.write_text(json.dumps({"lottery": {"payout_divisor": 3}, "server": {"port": 7000}}))
    monkeypatch.setenv("SERVER_PORT", "7100")
    monkeypatch.setenv("OPERATOR_AUTO_START_ROUNDS", "true")

    config = load_config(str(path))

    assert get_config_value(config, "lottery.payout_divisor") == 3
    assert get_config_value(config, "lottery.pool_scope") == "global"
    assert get_config_value(config, "server.port") == "7100"
    assert as_bool(get_config_value(config, "operator.auto_start_rounds")) is True


def test_get_config_value_defaults():
    config = {"a": {"b": None, "c": 1}}

    assert get_config_value(config, "a.c") == 1
    assert get_config_value(config, "a.b", 5) == 5
    assert get_config_value(config, "x.y", "d") == "d"


def test_build_entropy():
    assert isinstance(build_entropy({}), SecretsEntropy)
    seeded = build_entropy({"lottery": {"entropy": "seeded", "entropy_seed": "7"}})
    assert isinstance(seeded, SeededEntropy)
    with pytest.raises(ValueError):
        build_entropy({"lottery": {"entropy": "dice"}})


def test_entropy_stays_in_range():
    for source in (SecretsEntropy(), SeededEntropy(1)):
        draws = {source.random_in_range(0, 6) for _ in range(200)}
        assert draws <= set(range(6))
        with pytest.raises(ValueError):
            source.random_in_range(0, 0)


def test_derive_address():
    derived = derive_address("alice")

    assert derived.startswith("0x") and len(derived) == 42
    assert derive_address("alice") == derived
    assert derive_address("bob") != derived
    assert derive_address(derived.lower()) == derived
    with pytest.raises(ValueError):
        derive_address("")


def test_shorten_address():
    assert shorten_address("0x1234567890abcdef1234") == "0x123456...1234"
    assert shorten_address("") == ""
