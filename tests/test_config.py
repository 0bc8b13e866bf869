from datetime import timedelta

import pytest
from pydantic import ValidationError

from tqueue.adapters.queue.memory import InMemoryQueueClient
from tqueue.config import QueueServiceConfig, create_client

BASE = {
    "prefix": "tc",
    "claim_queue": "claim-q",
    "resolved_queue": "resolved-q",
    "deadline_queue": "deadline-q",
    "fake": True,
}


def _config(**overrides) -> QueueServiceConfig:
    return QueueServiceConfig(**{**BASE, **overrides})


def test_defaults():
    config = _config()
    assert config.deadline_delay_ms == 600_000
    assert config.deadline_delay == timedelta(minutes=10)
    assert config.timeout_seconds == 7.0


def test_config_is_frozen():
    config = _config()
    with pytest.raises(ValidationError):
        config.prefix = "other"


@pytest.mark.parametrize("prefix", ["", "toolong", "a_b", "-x"])
def test_invalid_prefix(prefix):
    with pytest.raises(ValidationError):
        _config(prefix=prefix)


@pytest.mark.parametrize("name", ["Claim", "ab", "a--b", "-claim", "claim-", "x" * 64])
def test_invalid_queue_names(name):
    with pytest.raises(ValidationError):
        _config(claim_queue=name)


def test_expiration_queue_under_pending_prefix_is_rejected():
    with pytest.raises(ValidationError, match="pending-queue prefix"):
        _config(deadline_queue="tc-deadline")


def test_negative_deadline_delay_is_rejected():
    with pytest.raises(ValidationError):
        _config(deadline_delay_ms=-1)


def test_credentials_required_without_fake():
    with pytest.raises(ValidationError, match="account_id and access_key"):
        _config(fake=False)
    config = _config(fake=False, account_id="acct", access_key="key")
    assert config.access_key.get_secret_value() == "key"
    assert "key" not in repr(config.access_key)


def test_from_env_reads_prefixed_variables():
    env = {
        "TQUEUE_PREFIX": "q1",
        "TQUEUE_CLAIM_QUEUE": "claims",
        "TQUEUE_RESOLVED_QUEUE": "resolved",
        "TQUEUE_DEADLINE_QUEUE": "deadlines",
        "TQUEUE_DEADLINE_DELAY_MS": "1500",
        "TQUEUE_TIMEOUT_SECONDS": "2.5",
        "TQUEUE_FAKE": "true",
        "UNRELATED": "x",
    }
    config = QueueServiceConfig.from_env(env)
    assert config.prefix == "q1"
    assert config.claim_queue == "claims"
    assert config.deadline_delay == timedelta(milliseconds=1500)
    assert config.timeout_seconds == 2.5
    assert config.fake is True


def test_from_env_custom_prefix():
    env = {
        "APP_PREFIX": "tc",
        "APP_CLAIM_QUEUE": "claim-q",
        "APP_RESOLVED_QUEUE": "resolved-q",
        "APP_DEADLINE_QUEUE": "deadline-q",
        "APP_ACCOUNT_ID": "acct",
        "APP_ACCESS_KEY": "key",
    }
    config = QueueServiceConfig.from_env(env, env_prefix="APP_")
    assert config.account_id == "acct"
    assert config.fake is False


def test_from_env_missing_values_fail():
    with pytest.raises(ValidationError):
        QueueServiceConfig.from_env({"TQUEUE_FAKE": "1"})


def test_from_env_uses_process_environment(monkeypatch):
    for key, value in {
        "TQUEUE_PREFIX": "tc",
        "TQUEUE_CLAIM_QUEUE": "claim-q",
        "TQUEUE_RESOLVED_QUEUE": "resolved-q",
        "TQUEUE_DEADLINE_QUEUE": "deadline-q",
        "TQUEUE_FAKE": "yes",
    }.items():
        monkeypatch.setenv(key, value)
    assert QueueServiceConfig.from_env().prefix == "tc"


def test_create_client_fake():
    assert isinstance(create_client(_config()), InMemoryQueueClient)


def test_create_client_azure():
    from tqueue.adapters.queue.azure import AzureQueueClient

    config = _config(
        fake=False,
        account_id="acct",
        access_key="key",
        account_url="http://127.0.0.1:10001/acct",
        timeout_seconds=3,
    )
    client = create_client(config)
    assert isinstance(client, AzureQueueClient)
    assert client.account_id == "acct"
    assert client.access_key == "key"
    assert client.account_url == "http://127.0.0.1:10001/acct"
    assert client.timeout == timedelta(seconds=3)
    assert client.service is None


def test_create_client_without_credentials_raises():
    config = QueueServiceConfig.model_construct(**{**BASE, "fake": False})
    with pytest.raises(ValueError, match="account_id and access_key"):
        create_client(config)
