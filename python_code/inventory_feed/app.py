"""
Main AWS Lambda handler for the Inventory Feed pipeline.

This module serves as the primary entry point and orchestrator for the function.
Its responsibilities include:
  - Computing the execution identifier and recording the execution.
  - Loading and validating configuration from environment variables.
  - Creating the service clients for this invocation and injecting them.
  - Calling pure, testable business logic functions from the 'core' module.
  - Managing the overall success/failure state and emitting the final metrics.

The handler never raises: every fault ends in a result returned to the caller.
"""

import os
from dataclasses import asdict
from datetime import datetime, timezone
from typing import Any, Dict

import httpx
from aws_lambda_powertools import Logger
from aws_lambda_powertools.utilities.typing import LambdaContext

from . import clients, core
from .clients import PipelineServices
from .config import Settings, function_name
from .exceptions import ExecutionLoopError, ProcessingFailedError
from .execution import ExecutionTracker, generate_execution_id
from .model import decode_bucket_notification

# --- Global Setup ---
logger = Logger(
    service="inventory-feed", level=os.environ.get("LOG_LEVEL", "INFO").upper()
)


def _latency_ms(start_time: datetime) -> int:
    return int((datetime.now(timezone.utc) - start_time).total_seconds() * 1000)


def run_pipeline(
    event: Any,
    services: PipelineServices,
    settings: Settings,
    execution_id: str,
    logger: Logger,
    input_recorded: bool = False,
) -> Dict[str, Any]:
    """
    Runs one invocation against already-constructed services.

    This function follows these steps:
    1. Records the execution input (fatal if it cannot be written), unless
       the caller already did. Events caused by the execution records
       themselves are rejected before anything is written.
    2. Decodes the trigger payload and classifies its keys.
    3. Processes each eligible key in isolation.
    4. Aggregates the outcomes and finalizes the execution.

    Returns:
        The processing results on success, otherwise the tracker's failure result.
    """
    start_time = datetime.now(timezone.utc)
    track = core.make_progress_tracker(logger)
    track(f"starting {function_name()}", {"input": event, "execution_id": execution_id})

    if services.tracker.is_execution_loop(event):
        return services.tracker.failed_execution(
            execution_id,
            ExecutionLoopError("invocation was triggered by an execution record"),
            event,
        )

    try:
        if not input_recorded:
            is_retry = services.tracker.record_new_execution(execution_id, event)
            track("recorded execution", {"execution_id": execution_id, "is_retry": is_retry})
        records = decode_bucket_notification(event)

        grouped = core.group_event_keys(records)
        track("grouped event keys", asdict(grouped))

        outcomes = [
            core.process_key(key_to_process, services, settings, track)
            for key_to_process in grouped.keys_to_process
        ]
        results = core.aggregate_outcomes(grouped, outcomes)

        metrics_payload = {
            "execution_id": execution_id,
            "keys_processed": len(results.processed_keys),
            "keys_filtered": len(results.filtered_keys),
            "processing_errors": len(results.processing_errors),
            "latency_ms": _latency_ms(start_time),
        }

        # If any keys failed to process, mark the execution as failed to enable triage.
        message = core.summarize_errors(results, len(grouped.keys_to_process))
        if message is not None:
            core.emit_metrics(settings.environment, "Failure", metrics_payload, logger)
            logger.error(message, extra={"execution_id": execution_id})
            return services.tracker.failed_execution(
                execution_id,
                ProcessingFailedError(message),
                event,
                details=results.to_dict(),
            )

        services.tracker.mark_execution_as_successful(execution_id)
        core.emit_metrics(settings.environment, "Success", metrics_payload, logger)
        track("results", results.to_dict())
        return results.to_dict()

    except Exception as e:
        error_payload = {
            "execution_id": execution_id,
            "error_type": type(e).__name__,
            "error_message": str(e),
            "latency_ms": _latency_ms(start_time),
        }
        core.emit_metrics(settings.environment, "Failure", error_payload, logger)
        logger.exception("Processing failed.", extra=error_payload)
        # If an execution loop is detected the failure record is not written.
        return services.tracker.failed_execution(execution_id, e, event)


# --- LAMBDA HANDLER ---


@logger.inject_lambda_context
def handler(event: Dict[str, Any], context: LambdaContext) -> Dict[str, Any]:
    """
    Main Lambda entry point, triggered by S3 bucket notifications.

    Computes the execution identifier before anything can fail, then creates
    the clients for this invocation and delegates to `run_pipeline`. Faults
    raised before the pipeline starts (missing configuration, client creation)
    are routed through the same execution tracker failure path.
    """
    execution_id = generate_execution_id(function_name(), event)
    tracker = ExecutionTracker(None, None, function_name(), logger)

    try:
        s3_client, dynamodb_resource = clients.get_boto_clients()
        tracker = ExecutionTracker(
            s3_client, os.environ.get("EXECUTIONS_BUCKET"), function_name(), logger
        )
        if tracker.is_execution_loop(event):
            return tracker.failed_execution(
                execution_id,
                ExecutionLoopError("invocation was triggered by an execution record"),
                event,
            )
        # The input is recorded before configuration is validated, so a failed
        # execution always has both its input and failure records.
        tracker.record_new_execution(execution_id, event)
        settings = Settings.from_env()
        logger.setLevel(settings.log_level)
    except Exception as e:
        logger.exception("Invocation setup failed.", extra={"execution_id": execution_id})
        return tracker.failed_execution(execution_id, e, event)

    with httpx.Client() as http_client:
        services = clients.build_services(
            settings, s3_client, dynamodb_resource, http_client, logger
        )
        return run_pipeline(
            event, services, settings, execution_id, logger, input_recorded=True
        )
