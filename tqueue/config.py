"""
Configuration for QueueService.

QueueServiceConfig is a frozen Pydantic model, so malformed settings fail at
construction time with a pydantic.ValidationError rather than on first use.

Environment variables read by from_env() (prefix TQUEUE_ by default):

  TQUEUE_PREFIX             queue name prefix for pending queues (≤ 6 chars)
  TQUEUE_CLAIM_QUEUE        claim-expiration queue name
  TQUEUE_RESOLVED_QUEUE     resolved-task queue name
  TQUEUE_DEADLINE_QUEUE     deadline queue name
  TQUEUE_DEADLINE_DELAY_MS  extra delay for deadline messages (default 600000)
  TQUEUE_ACCOUNT_ID         Azure storage account name
  TQUEUE_ACCESS_KEY         Azure storage account key
  TQUEUE_ACCOUNT_URL        endpoint override (e.g. Azurite)
  TQUEUE_FAKE               "1"/"true" to use the in-memory client
  TQUEUE_TIMEOUT_SECONDS    per-request timeout (default 7)
"""

from __future__ import annotations

import os
import re
from collections.abc import Mapping
from datetime import timedelta
from typing import Self

from pydantic import BaseModel, ConfigDict, Field, SecretStr, field_validator, model_validator

from tqueue.core.naming import validate_prefix
from tqueue.ports.queue_client import QueueClientPort

# Azure queue names: 3-63 chars, lowercase alphanumerics and single hyphens,
# starting and ending with an alphanumeric.
_QUEUE_NAME = re.compile(r"^[a-z0-9](?!.*--)[a-z0-9-]{1,61}[a-z0-9]$")

_TRUTHY = {"1", "true", "yes", "on"}


class QueueServiceConfig(BaseModel):
    """
    prefix            — prefix of every pending queue, max 6 chars
    claim_queue       — name of the claim-expiration queue
    resolved_queue    — name of the resolved-task queue
    deadline_queue    — name of the deadline queue
    deadline_delay_ms — ms after the deadline before deadline messages appear
    account_id        — Azure storage account name
    access_key        — Azure storage account key
    account_url       — endpoint override; defaults to the public Azure endpoint
    fake              — use InMemoryQueueClient instead of Azure
    timeout_seconds   — per-request timeout for the Azure client
    """

    model_config = ConfigDict(frozen=True)

    prefix: str
    claim_queue: str
    resolved_queue: str
    deadline_queue: str
    deadline_delay_ms: int = Field(default=10 * 60 * 1000, ge=0)
    account_id: str | None = None
    access_key: SecretStr | None = None
    account_url: str | None = None
    fake: bool = False
    timeout_seconds: float = Field(default=7.0, gt=0)

    @field_validator("prefix")
    @classmethod
    def _check_prefix(cls, v: str) -> str:
        return validate_prefix(v)

    @field_validator("claim_queue", "resolved_queue", "deadline_queue")
    @classmethod
    def _check_queue_name(cls, v: str) -> str:
        if not _QUEUE_NAME.match(v):
            raise ValueError(f"invalid queue name {v!r}")
        return v

    @model_validator(mode="after")
    def _check_consistency(self) -> Self:
        for name in (self.claim_queue, self.resolved_queue, self.deadline_queue):
            # The garbage collector owns everything under "{prefix}-".
            if name.startswith(f"{self.prefix}-"):
                raise ValueError(
                    f"queue {name!r} must not live under the pending-queue prefix"
                )
        if not self.fake and not (self.account_id and self.access_key):
            raise ValueError("account_id and access_key are required unless fake=True")
        return self

    @property
    def deadline_delay(self) -> timedelta:
        return timedelta(milliseconds=self.deadline_delay_ms)

    @classmethod
    def from_env(
        cls,
        environ: Mapping[str, str] | None = None,
        env_prefix: str = "TQUEUE_",
    ) -> QueueServiceConfig:
        """Build a config from environment variables (see module docstring)."""
        env = os.environ if environ is None else environ

        def get(key: str) -> str | None:
            return env.get(env_prefix + key) or None

        values: dict[str, object] = {
            "prefix": get("PREFIX"),
            "claim_queue": get("CLAIM_QUEUE"),
            "resolved_queue": get("RESOLVED_QUEUE"),
            "deadline_queue": get("DEADLINE_QUEUE"),
            "account_id": get("ACCOUNT_ID"),
            "access_key": get("ACCESS_KEY"),
            "account_url": get("ACCOUNT_URL"),
            "fake": (get("FAKE") or "").lower() in _TRUTHY,
        }
        if (delay := get("DEADLINE_DELAY_MS")) is not None:
            values["deadline_delay_ms"] = delay
        if (timeout := get("TIMEOUT_SECONDS")) is not None:
            values["timeout_seconds"] = timeout
        return cls.model_validate(values)


def create_client(config: QueueServiceConfig) -> QueueClientPort:
    """Select the queue client implementation the config asks for."""
    if config.fake:
        from tqueue.adapters.queue.memory import InMemoryQueueClient

        return InMemoryQueueClient()

    from tqueue.adapters.queue.azure import AzureQueueClient

    if config.account_id is None or config.access_key is None:
        raise ValueError("account_id and access_key are required unless fake=True")
    return AzureQueueClient(
        account_id=config.account_id,
        access_key=config.access_key.get_secret_value(),
        account_url=config.account_url,
        timeout=timedelta(seconds=config.timeout_seconds),
    )
