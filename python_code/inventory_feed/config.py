"""
Configuration for the Inventory Feed pipeline.

All values come from environment variables and are read per invocation, so a
missing variable surfaces as a `ConfigurationError` that the handler reports
through the execution tracker instead of crashing the runtime at import.
"""

import os
from dataclasses import dataclass
from typing import Optional

from .exceptions import ConfigurationError

DEFAULT_INVENTORY_KEYSPACE = "inventory-data"


def get_env_var(name: str, default: Optional[str] = None) -> str:
    """
    Gets an environment variable or raises a ConfigurationError for fast-failure.

    Args:
        name: The name of the environment variable.
        default: An optional default value. If not provided, the variable is required.

    Returns:
        The value of the environment variable.

    Raises:
        ConfigurationError: If the required environment variable is not set.
    """
    value = os.environ.get(name, default)
    if value is None:
        raise ConfigurationError(f"FATAL: Environment variable '{name}' is not set.")
    return value


def function_name() -> str:
    """Name of the running function, used to namespace execution records."""
    return os.environ.get("AWS_LAMBDA_FUNCTION_NAME", "unknown")


def _get_int_env_var(name: str, default: int) -> int:
    raw = get_env_var(name, str(default))
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(
            f"FATAL: Environment variable '{name}' must be an integer, got {raw!r}."
        ) from None


@dataclass(frozen=True)
class Settings:
    """
    Validated configuration for one invocation.

    Attributes:
        destination_webhook_url: URL that receives the converted records.
        executions_bucket: Bucket holding `input.json`/`failure.json` records.
        inventory_table: DynamoDB table backing the keyed inventory store.
        inventory_keyspace: Keyspace used for per-sku inventory aggregation.
        environment: Deployment environment, used as the metrics dimension.
        log_level: Powertools logger level.
        max_stash_workers: Concurrency for record-level merges within one key.
        webhook_timeout_seconds: Timeout applied to the webhook POST.
    """

    destination_webhook_url: str
    executions_bucket: str
    inventory_table: str
    inventory_keyspace: str = DEFAULT_INVENTORY_KEYSPACE
    environment: str = "dev"
    log_level: str = "INFO"
    max_stash_workers: int = 8
    webhook_timeout_seconds: int = 30

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            destination_webhook_url=get_env_var("DESTINATION_WEBHOOK_URL"),
            executions_bucket=get_env_var("EXECUTIONS_BUCKET"),
            inventory_table=get_env_var("INVENTORY_TABLE"),
            inventory_keyspace=get_env_var(
                "INVENTORY_KEYSPACE", DEFAULT_INVENTORY_KEYSPACE
            ),
            environment=get_env_var("ENVIRONMENT", "dev"),
            log_level=get_env_var("LOG_LEVEL", "INFO").upper(),
            max_stash_workers=max(1, _get_int_env_var("MAX_STASH_WORKERS", 8)),
            webhook_timeout_seconds=_get_int_env_var("WEBHOOK_TIMEOUT_SECONDS", 30),
        )
