"""Tests for environment-driven settings."""

import pytest

from wabridge.config import ConfigError, IgnoreRules, RetryPolicy, Settings, load_settings


def test_defaults_with_empty_env():
    settings = load_settings({})

    assert settings == Settings()
    assert settings.retry_policy == RetryPolicy(max_retries=3, retry_interval_ms=5000, backoff_factor=3)
    assert settings.webhook_timeout == 30.0
    assert settings.ignore == IgnoreRules()


def test_values_read_from_env():
    settings = load_settings(
        {
            "LOG_LEVEL": "debug",
            "WEBHOOK_RETRY_POLICY_MAX_RETRIES": "5",
            "WEBHOOK_RETRY_POLICY_RETRY_INTERVAL": "1000",
            "WEBHOOK_RETRY_POLICY_BACKOFF_FACTOR": "1.5",
            "WEBHOOK_HTTP_TIMEOUT": "10",
            "IGNORE_GROUP_MESSAGES": "false",
            "IGNORE_BOT_MESSAGES": "0",
        }
    )

    assert settings.log_level == "DEBUG"
    assert settings.retry_policy.max_retries == 5
    assert settings.retry_policy.retry_interval_ms == 1000
    assert settings.retry_policy.backoff_factor == 1.5
    assert settings.webhook_timeout == 10.0
    assert settings.ignore.groups is False
    assert settings.ignore.bots is False
    assert settings.ignore.status is True


def test_empty_values_fall_back_to_defaults():
    settings = load_settings({"WEBHOOK_RETRY_POLICY_MAX_RETRIES": "", "IGNORE_STATUS_MESSAGES": ""})

    assert settings.retry_policy.max_retries == 3
    assert settings.ignore.status is True


@pytest.mark.parametrize(
    "env",
    [
        {"WEBHOOK_RETRY_POLICY_MAX_RETRIES": "three"},
        {"WEBHOOK_RETRY_POLICY_MAX_RETRIES": "-1"},
        {"WEBHOOK_RETRY_POLICY_RETRY_INTERVAL": "0"},
        {"WEBHOOK_RETRY_POLICY_BACKOFF_FACTOR": "0"},
        {"WEBHOOK_HTTP_TIMEOUT": "-5"},
        {"IGNORE_GROUP_MESSAGES": "maybe"},
        {"LOG_LEVEL": "chatty"},
    ],
)
def test_invalid_values_raise_config_error(env):
    with pytest.raises(ConfigError):
        load_settings(env)


def test_delay_grows_geometrically():
    policy = RetryPolicy(max_retries=3, retry_interval_ms=5000, backoff_factor=3)

    assert policy.max_attempts == 4
    assert [policy.delay_ms(k) for k in range(3)] == [5000, 15000, 45000]


def test_public_dict_is_plain_data():
    public = Settings().as_public_dict()

    assert public["retry_policy"] == {"max_retries": 3, "retry_interval_ms": 5000, "backoff_factor": 3}
    assert public["ignore"]["groups"] is True
