"""
Core business logic for the Inventory Feed pipeline.

These functions are designed to be "pure" and testable, containing no direct
AWS SDK calls (all clients are passed in through `PipelineServices`) and no
global state. They receive all dependencies, including the Powertools logger,
from the main handler in app.py, allowing them to be unit-tested in isolation.
"""

import json
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple
from urllib.parse import unquote_plus

from aws_lambda_powertools import Logger

from .clients import InventoryStash, PipelineServices
from .config import Settings
from .converter import convert_csv_to_records
from .exceptions import SenderIdError, SkippedItemsError, serialize_error
from .model import (
    BucketNotificationRecord,
    FilteredKey,
    GroupedEventKeys,
    KeyFailed,
    KeyOutcome,
    KeyProcessed,
    KeyToProcess,
    ProcessingError,
    ProcessingResults,
)

REQUIRED_INVENTORY_ITEM_ATTRIBUTES = ("sku", "quantity", "price")

FOLDER_REASON = "key represents a folder"
NOT_INVENTORY_REASON = "key does not match an item in an `inventory` directory"
SKIPPED_ITEMS_MESSAGE = "inventory item(s) skipped due to missing required attributes"

ProgressTracker = Callable[[str, Dict[str, Any]], None]


def make_progress_tracker(logger: Logger) -> ProgressTracker:
    """Returns an observer that logs each progress event with its payload."""

    def track(message: str, payload: Dict[str, Any]) -> None:
        logger.info(message, extra={"progress": payload})

    return track


# --- Event Key Classifier ---


def decode_object_key(object_key: str) -> str:
    """Object key components are URI-encoded, with `+` used for encoding spaces."""
    return unquote_plus(object_key)


def group_event_keys(records: Iterable[BucketNotificationRecord]) -> GroupedEventKeys:
    """
    Splits notification records into filtered keys and keys to process.

    - filtered_keys: folders, and objects not directly within an `inventory` directory
    - keys_to_process: objects in an `inventory` directory, with decoded keys
    """
    grouped = GroupedEventKeys()
    for record in records:
        event_key = record.object_key

        if event_key.endswith("/"):
            grouped.filtered_keys.append(FilteredKey(key=event_key, reason=FOLDER_REASON))
            continue

        split_key = event_key.split("/")
        if len(split_key) < 2 or split_key[-2] != "inventory":
            grouped.filtered_keys.append(
                FilteredKey(key=event_key, reason=NOT_INVENTORY_REASON)
            )
            continue

        grouped.keys_to_process.append(
            KeyToProcess(bucket_name=record.bucket_name, key=decode_object_key(event_key))
        )
    return grouped


# --- Per-Key Processor ---


def extract_sender_id(object_key: str) -> str:
    """Keys are expected in the format `trading_partners/{sender_id}/inventory/{filename}`."""
    key_parts = object_key.split("/")
    if len(key_parts) != 4:
        raise SenderIdError(
            f"unable to extract sender ID from object key: {object_key}"
        )
    return key_parts[1]


def partition_inventory_items(
    items: List[Dict[str, Any]],
) -> Tuple[List[Dict[str, Any]], List[Dict[str, Any]]]:
    """Splits items into those carrying every required attribute and those skipped."""
    valid, skipped = [], []
    for item in items:
        if all(attribute in item for attribute in REQUIRED_INVENTORY_ITEM_ATTRIBUTES):
            valid.append(item)
        else:
            skipped.append(item)
    return valid, skipped


def merge_inventory_item(
    stash: InventoryStash, keyspace: str, sender_id: str, item: Dict[str, Any]
) -> Dict[str, Any]:
    """
    Merges one item into the stored inventory for its sku.

    The stored value maps sender IDs to `{price, quantity}`, so entries from
    other senders are preserved. This read-modify-write is not atomic: a
    concurrent writer for the same sku can lose an update.
    """
    existing = stash.get_value(item["sku"], keyspace) or {}
    value = {
        **existing,
        sender_id: {"price": item["price"], "quantity": item["quantity"]},
    }
    stash.set_value(item["sku"], value, keyspace)
    return value


def process_key(
    key_to_process: KeyToProcess,
    services: PipelineServices,
    settings: Settings,
    track: ProgressTracker,
) -> KeyOutcome:
    """
    Processes one feed file end to end.

    Any failure is returned as `KeyFailed` so that other keys in the batch are
    unaffected. The source object is only deleted when every item was valid and
    the webhook was reached.
    """
    key = key_to_process.key
    try:
        sender_id = extract_sender_id(key)
        file_contents = services.objects.get_text(key_to_process.bucket_name, key)

        inventory_json = convert_csv_to_records(file_contents)
        track("converted inventory JSON", {"key": key, "sender_id": sender_id, "inventory_json": inventory_json})

        valid_items, skipped_items = partition_inventory_items(inventory_json)

        def _merge(item: Dict[str, Any]) -> None:
            value = merge_inventory_item(
                services.stash, settings.inventory_keyspace, sender_id, item
            )
            track("merged inventory item", {"key": key, "sku": item["sku"], "value": value})

        if valid_items:
            with ThreadPoolExecutor(max_workers=settings.max_stash_workers) as executor:
                # list() re-raises the first merge failure, if any.
                list(executor.map(_merge, valid_items))

        status_code = services.webhook.post_json({sender_id: inventory_json})
        track("delivered inventory to webhook", {"key": key, "sender_id": sender_id, "status_code": status_code})

        if skipped_items:
            track(SKIPPED_ITEMS_MESSAGE, {"key": key, "skipped_inventory_items": skipped_items})
            return KeyFailed(key=key, error=SkippedItemsError(SKIPPED_ITEMS_MESSAGE))

        # Could also archive in a `processed` directory or in another bucket.
        services.objects.delete(key_to_process.bucket_name, key)
        track("deleted processed object", {"key": key})
        return KeyProcessed(key=key)
    except Exception as e:
        track("error processing document", {"key": key, "error": serialize_error(e)})
        return KeyFailed(key=key, error=e)


# --- Partial-Failure Aggregator ---


def aggregate_outcomes(
    grouped: GroupedEventKeys, outcomes: Iterable[KeyOutcome]
) -> ProcessingResults:
    """Folds per-key outcomes into the invocation result."""
    results = ProcessingResults(filtered_keys=list(grouped.filtered_keys))
    for outcome in outcomes:
        if isinstance(outcome, KeyProcessed):
            results.processed_keys.append(outcome.key)
        else:
            results.processing_errors.append(
                ProcessingError(key=outcome.key, error=outcome.error)
            )
    return results


def _pluralize(count: int, noun: str) -> str:
    return f"{count} {noun}{'' if count == 1 else 's'}"


def summarize_errors(results: ProcessingResults, key_count: int) -> Optional[str]:
    """Returns a summary message if any key failed, otherwise None."""
    error_count = len(results.processing_errors)
    if error_count == 0:
        return None
    return (
        f"encountered {_pluralize(error_count, 'error')} while attempting "
        f"to process {_pluralize(key_count, 'key')}"
    )


def emit_metrics(
    environment: str, status: str, payload: Dict[str, Any], logger: Logger
) -> None:
    """
    Formats and logs metrics in CloudWatch Embedded Metric Format (EMF).

    Dashboards and alarms should filter/group by the 'Environment' dimension.
    """
    base_metrics = {
        "KeysProcessed": payload.get("keys_processed", 0),
        "KeysFiltered": payload.get("keys_filtered", 0),
        "ProcessingErrors": payload.get("processing_errors", 0),
    }
    if "latency_ms" in payload:
        base_metrics["ProcessingLatencyMs"] = payload["latency_ms"]

    emf_payload = {
        "_aws": {
            "Timestamp": int(datetime.now(timezone.utc).timestamp() * 1000),
            "CloudWatchMetrics": [
                {
                    "Namespace": "InventoryFeedPipeline",
                    "Dimensions": [["Environment"]],
                    "Metrics": [
                        {"Name": k, "Unit": "Milliseconds" if "Latency" in k else "Count"}
                        for k in base_metrics
                    ],
                }
            ],
        },
        "Environment": environment,
        "Status": status,
        **payload,
        **base_metrics,
    }
    logger.info(json.dumps(emf_payload, default=str))
