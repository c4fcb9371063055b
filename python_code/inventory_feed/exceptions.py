"""
Exception types for the Inventory Feed pipeline.

Key-level failures are raised inside `core.process_key` and converted into
`KeyFailed` values there; top-level failures are caught once by the handler
and routed to the execution tracker.
"""

import traceback
from typing import Any, Dict


class InventoryFeedError(Exception):
    """Base class for all errors raised by this package."""


class ConfigurationError(InventoryFeedError, ValueError):
    """A required environment variable is missing or invalid."""


class EventDecodingError(InventoryFeedError, ValueError):
    """The trigger payload is not a well-formed bucket notification event."""


class SenderIdError(InventoryFeedError):
    """The sender ID could not be extracted from an object key."""


class ConversionError(InventoryFeedError):
    """A CSV feed file could not be converted to records."""


class SkippedItemsError(InventoryFeedError):
    """One or more inventory items were skipped due to missing attributes."""


class WebhookDeliveryError(InventoryFeedError):
    """The destination webhook could not be reached."""


class ProcessingFailedError(InventoryFeedError):
    """One or more keys in the batch failed to process."""


class ExecutionLoopError(InventoryFeedError):
    """The invocation was triggered by this function's own execution records."""


def serialize_error(error: BaseException) -> Dict[str, Any]:
    """Renders an exception as JSON-safe data for logs and execution records."""
    return {
        "name": type(error).__name__,
        "message": str(error),
        "stack": "".join(
            traceback.format_exception(type(error), error, error.__traceback__)
        ),
    }
