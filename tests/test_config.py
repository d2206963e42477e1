import pytest
import yaml

from core.config import (
    ConfigManager,
    ConfigValidator,
    DefaultConfigLoader,
    EnvConfigLoader,
    FileConfigLoader,
    coerce_value,
    get_config_manager,
    parse_duration,
)

REQUIRED_ENV = {
    "CROWDSEC_BOUNCER_API_KEY": "lapi-key",
    "UNIFI_API_KEY": "unifi-key",
}


def load(environ, base=None) -> ConfigManager:
    return ConfigManager(loader=EnvConfigLoader(base or DefaultConfigLoader(), environ=environ))


def test_defaults_with_required_env():
    config = load(dict(REQUIRED_ENV))

    assert config.is_loaded()
    assert config.get_config("crowdsec.api_key") == "lapi-key"
    assert config.get_config("bouncer.max_group_size") == 10000
    assert config.get_config("bouncer.zone_based") == "auto"
    assert config.get_config("bouncer.group_prefix") == "cs-unifi-bouncer"
    assert config.get_config("no.such.key", "fallback") == "fallback"


def test_env_values_are_coerced():
    config = load({
        **REQUIRED_ENV,
        "UNIFI_IPV6": "true",
        "UNIFI_MAX_GROUP_SIZE": "500",
        "UNIFI_ZONE_DST": "Internal, Dmz",
        "UNIFI_ZONE_BASED": "false",
        "CROWDSEC_UPDATE_INTERVAL": "30s",
        "UNIFI_SKIP_TLS_VERIFY": "0",
    })

    assert config.get_config("bouncer.ipv6") is True
    assert config.get_config("bouncer.max_group_size") == 500
    assert config.get_config("bouncer.zone_dst") == ["Internal", "Dmz"]
    assert config.get_config("bouncer.zone_based") is False
    assert config.get_config("crowdsec.update_interval") == 30.0
    assert config.get_config("unifi.skip_tls_verify") is False


def test_unparseable_env_value_is_ignored():
    config = load({**REQUIRED_ENV, "UNIFI_MAX_GROUP_SIZE": "lots"})
    assert config.get_config("bouncer.max_group_size") == 10000


def test_missing_credentials_fail_validation():
    config = load({})

    assert not config.is_loaded()
    assert any("crowdsec.api_key" in error for error in config.errors)
    assert any("unifi.api_key" in error for error in config.errors)


def test_username_password_is_enough_for_unifi():
    config = load({"CROWDSEC_BOUNCER_API_KEY": "k", "UNIFI_USER": "admin", "UNIFI_PASS": "pw"})
    assert config.is_loaded()


def test_dummy_controller_needs_no_unifi_credentials():
    config = load({"CROWDSEC_BOUNCER_API_KEY": "k", "BOUNCER_CONTROLLER": "dummy"})
    assert config.is_loaded()


@pytest.mark.parametrize("override, fragment", [
    ({"max_group_size": 0}, "max_group_size"),
    ({"group_strategy": "round_robin"}, "group_strategy"),
    ({"zone_based": "sometimes"}, "zone_based"),
    ({"inactivity_interval": -1}, "inactivity_interval"),
])
def test_validator_rejects_bad_values(override, fragment):
    config = DefaultConfigLoader().load()
    config["crowdsec"]["api_key"] = "k"
    config["unifi"]["api_key"] = "u"
    config["bouncer"].update(override)

    result = ConfigValidator().validate(config)

    assert not result
    assert any(fragment in error for error in result.errors)


def test_file_values_merge_over_defaults(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(yaml.safe_dump({
        "crowdsec": {"api_key": "from-file"},
        "unifi": {"api_key": "u", "site": "branch"},
        "bouncer": {"zone_dst": ["Internal", "Vpn"]},
    }))

    config = load({"UNIFI_SITE": "hq"}, base=FileConfigLoader(str(path)))

    assert config.get_config("crowdsec.api_key") == "from-file"
    assert config.get_config("unifi.site") == "hq"
    assert config.get_config("bouncer.zone_dst") == ["Internal", "Vpn"]
    assert config.get_config("bouncer.max_group_size") == 10000


def test_file_loader_requires_existing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        FileConfigLoader(str(tmp_path / "missing.yaml"))


def test_get_config_manager_falls_back_to_defaults(tmp_path, monkeypatch):
    for name, value in REQUIRED_ENV.items():
        monkeypatch.setenv(name, value)

    config = get_config_manager(str(tmp_path / "absent.yaml"))

    assert config.is_loaded()
    assert config is get_config_manager()
    assert config.get_config("unifi.api_key") == "unifi-key"


def test_coerce_value():
    assert coerce_value("yes", False) is True
    assert coerce_value("42", 0) == 42
    assert coerce_value("a,b c", []) == ["a", "b", "c"]
    assert coerce_value("text", "") == "text"


@pytest.mark.parametrize("raw, seconds", [
    ("2.5", 2.5),
    ("10", 10.0),
    ("500ms", 0.5),
    ("30s", 30.0),
    ("1m30s", 90.0),
    ("2h", 7200.0),
])
def test_parse_duration(raw, seconds):
    assert parse_duration(raw) == pytest.approx(seconds)


@pytest.mark.parametrize("raw", ["", "fast", "10x", "s10", "1m garbage"])
def test_parse_duration_rejects_garbage(raw):
    with pytest.raises(ValueError):
        parse_duration(raw)


def test_unparseable_duration_env_is_ignored():
    config = load({**REQUIRED_ENV, "CROWDSEC_UPDATE_INTERVAL": "soon"})
    assert config.get_config("crowdsec.update_interval") == 5.0


def test_file_durations_are_converted_to_seconds(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(yaml.safe_dump({
        "crowdsec": {"api_key": "k", "update_interval": "1m"},
        "unifi": {"api_key": "u"},
        "bouncer": {"startup_delay": "15s", "inactivity_interval": 2},
    }))

    config = load({}, base=FileConfigLoader(str(path)))

    assert config.get_config("crowdsec.update_interval") == 60.0
    assert config.get_config("bouncer.startup_delay") == 15.0
    assert config.get_config("bouncer.inactivity_interval") == 2
