"""
A factory module for creating and providing the pipeline's service clients.

This module is the core of the Dependency Injection (DI) pattern for the
application. The handler constructs a `PipelineServices` bundle once per
invocation and passes it into the pipeline, so tests can supply clients backed
by `moto` and an `httpx.MockTransport` without touching real endpoints.
"""

import logging
import os
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

import boto3
import botocore.config
import httpx
from aws_lambda_powertools import Logger

from mypy_boto3_dynamodb.service_resource import DynamoDBServiceResource, Table
from mypy_boto3_s3 import S3Client

from .config import Settings, function_name
from .exceptions import WebhookDeliveryError
from .execution import ExecutionTracker

logger = logging.getLogger(__name__)

# A shared retry configuration for boto3 clients that need to be resilient to
# transient network or server-side errors.
BOTO_CONFIG_RETRYABLE = botocore.config.Config(
    retries={"max_attempts": 5, "mode": "adaptive"}
)


def get_boto_clients() -> Tuple[S3Client, DynamoDBServiceResource]:
    """
    Returns a tuple of the AWS service clients used by the pipeline.

    It inspects the environment for a `USE_MOTO` flag. If present, it's assumed
    that `moto` is active and will intercept the `boto3` calls to return mocked
    clients. Otherwise, it creates real AWS clients.

    Returns:
        A tuple containing initialized boto3 clients in the following order:
        (s3_client, dynamodb_resource)
    """
    aws_region = os.environ.get("AWS_REGION")
    if not aws_region:
        logger.warning("AWS_REGION not set, boto3 will attempt to resolve it.")

    if os.environ.get("USE_MOTO"):
        logger.info("MOTO ENABLED: Returning mocked AWS clients.")

    s3_client: S3Client = boto3.client(
        "s3", region_name=aws_region, config=BOTO_CONFIG_RETRYABLE
    )
    dynamodb_resource: DynamoDBServiceResource = boto3.resource(
        "dynamodb", region_name=aws_region, config=BOTO_CONFIG_RETRYABLE
    )
    return s3_client, dynamodb_resource


class ObjectStore:
    """Reads and deletes feed files in the landing bucket."""

    def __init__(self, s3_client: S3Client):
        self._s3 = s3_client

    def get_text(self, bucket: str, key: str, encoding: str = "utf-8-sig") -> str:
        response = self._s3.get_object(Bucket=bucket, Key=key)
        with response["Body"] as body:
            return body.read().decode(encoding)

    def delete(self, bucket: str, key: str) -> None:
        self._s3.delete_object(Bucket=bucket, Key=key)


class InventoryStash:
    """
    A keyed value store on top of a DynamoDB table.

    Items are addressed by a `keyspace` partition key and a `key` sort key, and
    hold the stored mapping under `value`. Writes are unconditional.
    """

    def __init__(self, table: Table):
        self._table = table

    def get_value(self, key: str, keyspace: str) -> Optional[Dict[str, Any]]:
        response = self._table.get_item(Key={"keyspace": keyspace, "key": key})
        item = response.get("Item")
        if item is None:
            return None
        return dict(item.get("value") or {})

    def set_value(self, key: str, value: Dict[str, Any], keyspace: str) -> None:
        self._table.put_item(Item={"keyspace": keyspace, "key": key, "value": value})


class WebhookClient:
    """
    Posts JSON payloads to the destination webhook.

    Any HTTP response counts as delivered; only transport failures are errors.
    """

    def __init__(self, url: str, http_client: httpx.Client, timeout: float = 30):
        self._url = url
        self._http = http_client
        self._timeout = timeout

    def post_json(self, payload: Dict[str, Any]) -> int:
        try:
            response = self._http.post(
                self._url,
                json=payload,
                headers={"Content-Type": "application/json"},
                timeout=self._timeout,
            )
        except httpx.HTTPError as e:
            raise WebhookDeliveryError(f"webhook delivery failed: {e}") from e
        return response.status_code


@dataclass
class PipelineServices:
    """The explicitly constructed collaborators for one invocation."""

    objects: ObjectStore
    stash: InventoryStash
    webhook: WebhookClient
    tracker: ExecutionTracker


def build_services(
    settings: Settings,
    s3_client: S3Client,
    dynamodb_resource: DynamoDBServiceResource,
    http_client: httpx.Client,
    powertools_logger: Logger,
) -> PipelineServices:
    """Wires the service objects for one invocation from already-created clients."""
    return PipelineServices(
        objects=ObjectStore(s3_client),
        stash=InventoryStash(dynamodb_resource.Table(settings.inventory_table)),
        webhook=WebhookClient(
            settings.destination_webhook_url,
            http_client,
            timeout=settings.webhook_timeout_seconds,
        ),
        tracker=ExecutionTracker(
            s3_client, settings.executions_bucket, function_name(), powertools_logger
        ),
    )
