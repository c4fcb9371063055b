"""
tests/conftest.py

Shared fixtures for the Inventory Feed test suite.

AWS is mocked with `moto`; the destination webhook is an `httpx.MockTransport`
that records every request it receives.
"""

import json
from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Optional

import boto3
import httpx
import pytest
from aws_lambda_powertools import Logger
from moto import mock_aws

from inventory_feed.clients import PipelineServices, build_services
from inventory_feed.config import Settings

REGION = "us-east-1"
LANDING_BUCKET = "inventory-landing"
EXECUTIONS_BUCKET = "inventory-executions"
INVENTORY_TABLE = "inventory-stash"
WEBHOOK_URL = "https://webhook.example.com/inventory"
FUNCTION_NAME = "inventory-feed-processor"


@pytest.fixture(autouse=True)
def aws_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Fake credentials and pipeline configuration for every test."""
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "testing")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "testing")
    monkeypatch.setenv("AWS_SECURITY_TOKEN", "testing")
    monkeypatch.setenv("AWS_SESSION_TOKEN", "testing")
    monkeypatch.setenv("AWS_DEFAULT_REGION", REGION)
    monkeypatch.setenv("AWS_REGION", REGION)
    monkeypatch.setenv("USE_MOTO", "1")
    monkeypatch.setenv("AWS_LAMBDA_FUNCTION_NAME", FUNCTION_NAME)
    monkeypatch.setenv("DESTINATION_WEBHOOK_URL", WEBHOOK_URL)
    monkeypatch.setenv("EXECUTIONS_BUCKET", EXECUTIONS_BUCKET)
    monkeypatch.setenv("INVENTORY_TABLE", INVENTORY_TABLE)


@pytest.fixture
def aws() -> Iterator[Any]:
    """Starts moto and creates the landing bucket, executions bucket and stash table."""
    with mock_aws():
        s3 = boto3.client("s3", region_name=REGION)
        s3.create_bucket(Bucket=LANDING_BUCKET)
        s3.create_bucket(Bucket=EXECUTIONS_BUCKET)

        dynamodb = boto3.resource("dynamodb", region_name=REGION)
        dynamodb.create_table(
            TableName=INVENTORY_TABLE,
            KeySchema=[
                {"AttributeName": "keyspace", "KeyType": "HASH"},
                {"AttributeName": "key", "KeyType": "RANGE"},
            ],
            AttributeDefinitions=[
                {"AttributeName": "keyspace", "AttributeType": "S"},
                {"AttributeName": "key", "AttributeType": "S"},
            ],
            BillingMode="PAY_PER_REQUEST",
        )
        yield s3, dynamodb


@pytest.fixture
def s3(aws: Any) -> Any:
    return aws[0]


class WebhookRecorder:
    """An httpx transport handler that records JSON bodies posted to it."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.requests: List[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if self.fail:
            raise httpx.ConnectError("connection refused", request=request)
        self.requests.append(request)
        return httpx.Response(200, json={"ok": True})

    @property
    def payloads(self) -> List[Dict[str, Any]]:
        return [json.loads(r.content) for r in self.requests]


@pytest.fixture
def webhook() -> WebhookRecorder:
    return WebhookRecorder()


@pytest.fixture
def http_client(webhook: WebhookRecorder) -> Iterator[httpx.Client]:
    with httpx.Client(transport=httpx.MockTransport(webhook)) as client:
        yield client


@pytest.fixture
def settings() -> Settings:
    return Settings(
        destination_webhook_url=WEBHOOK_URL,
        executions_bucket=EXECUTIONS_BUCKET,
        inventory_table=INVENTORY_TABLE,
        max_stash_workers=2,
    )


@pytest.fixture
def test_logger() -> Logger:
    return Logger(service="inventory-feed-test")


@pytest.fixture
def services(
    aws: Any, settings: Settings, http_client: httpx.Client, test_logger: Logger
) -> PipelineServices:
    s3, dynamodb = aws
    return build_services(settings, s3, dynamodb, http_client, test_logger)


def s3_event(*keys: str, bucket: str = LANDING_BUCKET) -> Dict[str, Any]:
    """Builds an S3 notification event with one record per key."""
    return {
        "Records": [
            {
                "eventSource": "aws:s3",
                "eventName": "ObjectCreated:Put",
                "s3": {"bucket": {"name": bucket}, "object": {"key": key}},
            }
            for key in keys
        ]
    }


def object_exists(s3: Any, bucket: str, key: str) -> bool:
    response = s3.list_objects_v2(Bucket=bucket, Prefix=key)
    return any(obj["Key"] == key for obj in response.get("Contents", []))


@dataclass
class FakeLambdaContext:
    function_name: str = FUNCTION_NAME
    memory_limit_in_mb: int = 128
    invoked_function_arn: str = (
        f"arn:aws:lambda:{REGION}:123456789012:function:{FUNCTION_NAME}"
    )
    aws_request_id: str = "52fdfc07-2182-154f-163f-5f0f9a621d72"
    function_version: str = "$LATEST"
    log_group_name: str = f"/aws/lambda/{FUNCTION_NAME}"
    log_stream_name: str = "2026/10/17/[$LATEST]abcdef"
    tenant_id: Optional[str] = None

    def get_remaining_time_in_millis(self) -> int:
        return 300_000
