import pytest

from flowmap.config import RetryPolicy, Settings, parse_positive_float, parse_positive_int
from flowmap.errors import ConfigError


@pytest.mark.parametrize("value,expected", [(1, 1), ("100", 100), (" 25 ", 25), (50.0, 50)])
def test_parse_positive_int_accepts(value, expected):
    assert parse_positive_int(value, "page_limit") == expected


@pytest.mark.parametrize("value", [0, -3, "abc", "", "2.5", 2.5, None, True, float("nan"), float("inf")])
def test_parse_positive_int_rejects(value):
    with pytest.raises(ConfigError):
        parse_positive_int(value, "page_limit")


def test_parse_positive_float():
    assert parse_positive_float("450", "distance") == 450.0
    assert parse_positive_float(0.5, "distance") == 0.5
    for bad in (0, -1, "x", float("nan"), False):
        with pytest.raises(ConfigError):
            parse_positive_float(bad, "distance")


def test_config_error_is_a_value_error():
    with pytest.raises(ValueError):
        parse_positive_int("nope", "page_limit")


def test_retry_policy_backoff_is_capped():
    policy = RetryPolicy(max_attempts=5, base_delay=0.5, max_delay=3.0)
    assert [policy.delay_for(a) for a in range(1, 6)] == [0.5, 1.0, 2.0, 3.0, 3.0]
    assert policy.allows(4)
    assert not policy.allows(5)


def test_unbounded_retry_policy():
    policy = RetryPolicy(max_attempts=None)
    assert policy.allows(10_000)


def test_settings_from_env(monkeypatch):
    monkeypatch.setenv("LEDGER_SOURCE", "SIM")
    monkeypatch.setenv("LAYOUT_DISTANCE", "300")
    monkeypatch.setenv("PAGE_LIMIT", "20")
    monkeypatch.setenv("RETRY_MAX_ATTEMPTS", "0")
    monkeypatch.setenv("SEED_ADDRESS", "")
    monkeypatch.setenv("EXPLORER_URL", "https://example.org/")

    s = Settings.from_env()

    assert s.ledger_source == "sim"
    assert s.layout_distance == 300.0
    assert s.page_limit == 20
    assert s.retry.max_attempts is None
    assert s.seed_address is None
    assert s.explorer_url == "https://example.org"


def test_settings_from_env_rejects_bad_values(monkeypatch):
    monkeypatch.setenv("PAGE_LIMIT", "0")
    with pytest.raises(ConfigError):
        Settings.from_env()

    monkeypatch.delenv("PAGE_LIMIT")
    monkeypatch.setenv("LEDGER_SOURCE", "postgres")
    with pytest.raises(ConfigError):
        Settings.from_env()


@pytest.mark.parametrize(
    "name,value",
    [("RETRY_MAX_ATTEMPTS", "many"), ("RETRY_MAX_ATTEMPTS", "-1"), ("RETRY_BASE_DELAY", "soon"), ("RETRY_MAX_DELAY", "0")],
)
def test_settings_from_env_rejects_bad_retry_values(monkeypatch, name, value):
    monkeypatch.setenv(name, value)
    with pytest.raises(ConfigError):
        Settings.from_env()
