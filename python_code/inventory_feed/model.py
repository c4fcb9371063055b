"""
Data models for the Inventory Feed pipeline.

This module defines the core data structures used to pass information between
different parts of the application. Using dataclasses and TypedDicts ensures
data contracts are explicit, statically checked by mypy, and self-documenting.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, TypedDict, Union

from .exceptions import EventDecodingError, serialize_error


class S3BucketEntity(TypedDict):
    name: str


class S3ObjectEntity(TypedDict):
    key: str


class S3Entity(TypedDict):
    bucket: S3BucketEntity
    object: S3ObjectEntity


class S3EventRecord(TypedDict):
    """
    Represents the structure of a single record from an S3 notification event.

    Only the attributes used by this application are declared; others such as
    'eventName' or 'eventTime' may be present and are ignored.
    """

    s3: S3Entity


@dataclass(frozen=True)
class BucketNotificationRecord:
    """
    One validated entry of a bucket notification.

    Attributes:
        bucket_name: The bucket the changed object lives in.
        object_key: The object key exactly as delivered, still URI-encoded.
    """

    bucket_name: str
    object_key: str


def decode_bucket_notification(event: Any) -> List[BucketNotificationRecord]:
    """
    Strictly decodes a raw trigger payload into notification records.

    Raises:
        EventDecodingError: If the payload, or any record in it, does not have
            the expected `{"Records": [{"s3": {"bucket": {"name"}, "object":
            {"key"}}}]}` shape.
    """
    if not isinstance(event, Mapping):
        raise EventDecodingError(
            f"expected event to be an object, got {type(event).__name__}"
        )
    raw_records = event.get("Records")
    if not isinstance(raw_records, list):
        raise EventDecodingError("expected event to contain a 'Records' list")

    records = []
    for index, raw in enumerate(raw_records):
        try:
            s3 = raw["s3"]
            bucket_name = s3["bucket"]["name"]
            object_key = s3["object"]["key"]
        except (KeyError, TypeError) as e:
            raise EventDecodingError(
                f"record {index} is missing required attribute {e}"
            ) from e
        if not isinstance(bucket_name, str) or not isinstance(object_key, str):
            raise EventDecodingError(
                f"record {index} has a non-string bucket name or object key"
            )
        records.append(
            BucketNotificationRecord(bucket_name=bucket_name, object_key=object_key)
        )
    return records


@dataclass(frozen=True)
class FilteredKey:
    """A key excluded from processing, with a human-readable reason."""

    key: str
    reason: str


@dataclass(frozen=True)
class KeyToProcess:
    """An eligible unit of work; `key` has already been URI-decoded."""

    bucket_name: str
    key: str


@dataclass
class GroupedEventKeys:
    """The Classifier's output: keys to report as filtered and keys to process."""

    filtered_keys: List[FilteredKey] = field(default_factory=list)
    keys_to_process: List[KeyToProcess] = field(default_factory=list)


@dataclass(frozen=True)
class KeyProcessed:
    """Outcome of a key whose records were delivered and whose object was deleted."""

    key: str


@dataclass(frozen=True)
class KeyFailed:
    """Outcome of a key that failed at any step; its object was not deleted."""

    key: str
    error: Exception


KeyOutcome = Union[KeyProcessed, KeyFailed]


@dataclass(frozen=True)
class ProcessingError:
    key: str
    error: Exception

    def to_dict(self) -> Dict[str, Any]:
        details = serialize_error(self.error)
        return {
            "key": self.key,
            "error": {"name": details["name"], "message": details["message"]},
        }


@dataclass
class ProcessingResults:
    """
    The outcome of one invocation.

    Every notification record ends up in exactly one of the three lists.

    Attributes:
        filtered_keys: Keys excluded by the Classifier.
        processed_keys: Keys fully processed; their source objects were deleted.
        processing_errors: Keys that failed; their source objects were kept.
    """

    filtered_keys: List[FilteredKey] = field(default_factory=list)
    processed_keys: List[str] = field(default_factory=list)
    processing_errors: List[ProcessingError] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "filtered_keys": [
                {"key": f.key, "reason": f.reason} for f in self.filtered_keys
            ],
            "processed_keys": list(self.processed_keys),
            "processing_errors": [e.to_dict() for e in self.processing_errors],
        }
