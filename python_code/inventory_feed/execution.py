"""
Execution tracking for the Inventory Feed pipeline.

Each invocation is identified by a deterministic digest of the function name
and its input, so a redelivered event maps onto the same execution record.
Records live in the executions bucket under
`functions/{function_name}/{execution_id}/`:

  - `input.json` is written before any processing and removed on success.
  - `failure.json` is written on failure and removed by a later success.

Only in-flight or failed executions therefore remain visible in the bucket.
"""

import hashlib
import json
from typing import Any, Dict, Optional, Tuple

from aws_lambda_powertools import Logger
from botocore.exceptions import ClientError
from mypy_boto3_s3 import S3Client

from .exceptions import ConfigurationError, EventDecodingError, serialize_error

_NOT_FOUND_CODES = {"404", "NoSuchKey", "NotFound"}


def generate_execution_id(function: str, event: Any) -> str:
    """
    Computes a stable SHA-256 identifier for one logical invocation.

    The payload is serialized canonically (sorted keys, compact separators)
    so that redeliveries of the same event always yield the same identifier.
    """
    canonical = json.dumps(
        {"function_name": function, "event": event},
        sort_keys=True,
        separators=(",", ":"),
        default=str,
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def _build_response(status_code: int, body: Dict[str, Any]) -> Dict[str, Any]:
    """Centralized helper to build the failure response."""
    return {"statusCode": status_code, "body": json.dumps(body, default=str)}


class ExecutionTracker:
    """
    Records, clears and fails executions in the executions bucket.

    Args:
        s3_client: The boto3 S3 client, shared with the per-key processing.
        bucket_name: The executions bucket.
        function: Function name used to namespace the records.
        logger: The Powertools Logger instance for structured logging.

    Either `s3_client` or `bucket_name` may be None when the invocation failed
    before they could be resolved. Recording then raises `ConfigurationError`
    and `failed_execution` returns its result without writing anything.
    """

    def __init__(
        self,
        s3_client: Optional[S3Client],
        bucket_name: Optional[str],
        function: str,
        logger: Logger,
    ):
        self._s3 = s3_client
        self._bucket = bucket_name
        self._function = function
        self._logger = logger

    @property
    def prefix(self) -> str:
        return f"functions/{self._function}/"

    def input_key(self, execution_id: str) -> str:
        return f"{self.prefix}{execution_id}/input.json"

    def failure_key(self, execution_id: str) -> str:
        return f"{self.prefix}{execution_id}/failure.json"

    def _storage(self) -> Tuple[S3Client, str]:
        if self._s3 is None or not self._bucket:
            raise ConfigurationError("execution tracking storage is not configured")
        return self._s3, self._bucket

    def _object_exists(self, key: str) -> bool:
        s3, bucket = self._storage()
        try:
            s3.head_object(Bucket=bucket, Key=key)
            return True
        except ClientError as e:
            if e.response["Error"]["Code"] in _NOT_FOUND_CODES:
                return False
            raise

    def record_new_execution(self, execution_id: str, event: Any) -> bool:
        """
        Persists the invocation input. Must succeed before processing begins.

        Returns:
            True if a record for this execution already existed, i.e. this is a
            redelivery of an execution that never completed successfully.
        """
        s3, bucket = self._storage()
        input_key = self.input_key(execution_id)

        is_retry = self._object_exists(input_key)
        if is_retry:
            self._logger.warning(
                "Retrying execution.",
                extra={
                    "execution_id": execution_id,
                    "previously_failed": self._object_exists(self.failure_key(execution_id)),
                },
            )

        s3.put_object(
            Bucket=bucket,
            Key=input_key,
            Body=json.dumps(event, default=str).encode("utf-8"),
            ContentType="application/json",
        )
        self._logger.info("Recorded execution input.", extra={"execution_id": execution_id})
        return is_retry

    def mark_execution_as_successful(self, execution_id: str) -> None:
        """Deletes the input record and any failure record left by a prior attempt."""
        s3, bucket = self._storage()
        for key in (self.input_key(execution_id), self.failure_key(execution_id)):
            s3.delete_object(Bucket=bucket, Key=key)
        self._logger.info(
            "Marked execution as successful.", extra={"execution_id": execution_id}
        )

    def is_execution_loop(self, event: Any) -> bool:
        """
        Detects an invocation triggered by this tracker's own writes.

        Writing a failure record in response to such an event would trigger the
        function again, so nothing may be persisted for it.
        """
        if not self._bucket or not isinstance(event, dict):
            return False
        records = event.get("Records")
        if not isinstance(records, list):
            return False
        for record in records:
            try:
                bucket = record["s3"]["bucket"]["name"]
                key = record["s3"]["object"]["key"]
            except (KeyError, TypeError):
                continue
            if bucket == self._bucket and isinstance(key, str) and key.startswith(self.prefix):
                return True
        return False

    def failed_execution(
        self,
        execution_id: str,
        error: Exception,
        event: Any = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        Records a failed execution and returns the failure result.

        This never raises: an error while writing the failure record is logged
        and reflected in `failure_recorded` of the returned body.

        Args:
            execution_id: The identifier from `generate_execution_id`.
            error: The error that failed the execution.
            event: The raw trigger payload, inspected by the loop guard.
            details: Optional extra data for the result body, such as the
                per-key processing results.
        """
        failure_record = {"message": "execution failed", "error": serialize_error(error)}
        failure_recorded = False

        if self.is_execution_loop(event):
            self._logger.error(
                "Execution loop detected; failure record not written.",
                extra={"execution_id": execution_id},
            )
        else:
            try:
                s3, bucket = self._storage()
                s3.put_object(
                    Bucket=bucket,
                    Key=self.failure_key(execution_id),
                    Body=json.dumps(failure_record).encode("utf-8"),
                    ContentType="application/json",
                )
                failure_recorded = True
            except Exception:
                self._logger.exception(
                    "Could not write failure record.", extra={"execution_id": execution_id}
                )

        body: Dict[str, Any] = {
            "execution_id": execution_id,
            "message": str(error),
            "failure_record": failure_record,
            "failure_recorded": failure_recorded,
        }
        if details is not None:
            body["details"] = details

        status_code = 400 if isinstance(error, EventDecodingError) else 500
        return _build_response(status_code, body)
