"""
Structured Logging & Observability
Logging that's both human-readable and machine-parseable.
"""
import sys
from loguru import logger
from typing import Any
from jobqueue.config import get_settings


def configure_logging():
    """
    Configure loguru for queue workers.

    In development: Human-readable colorized output
    In production: Structured JSON logs for ingestion (CloudWatch, Datadog, etc.)
    """
    settings = get_settings()

    # Remove default handler
    logger.remove()

    if not settings.enable_structured_logging:
        logger.add(
            sys.stderr,
            format=(
                "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
                "<level>{level: <8}</level> | "
                "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
                "{message}"
            ),
            level=settings.log_level,
            colorize=True,
        )
    else:
        logger.add(
            sys.stderr,
            format="{message}",
            level=settings.log_level,
            serialize=True,  # Output as JSON
        )

    logger.info(f"Logging configured: level={settings.log_level}, structured={settings.enable_structured_logging}")


def log_job_event(
    event: str,
    job_id: str,
    queue_name: str,
    level: str = "INFO",
    **context: Any
):
    """
    Structured logging for job lifecycle events.

    Args:
        event: What happened (e.g., "enqueued", "completed", "retry", "dead_letter")
        job_id: The job involved
        queue_name: Queue the job belongs to
        level: Loguru level name
        **context: Additional context (attempts, error, duration_ms, ...)

    Example:
        >>> log_job_event(
        ...     "retry",
        ...     job_id="6f1c...",
        ...     queue_name="proposal",
        ...     attempts=2,
        ...     error="OpenAI timeout"
        ... )
    """
    log_data = {
        "event_type": f"job_{event}",
        "job_id": job_id,
        "queue": queue_name,
    }

    if "duration_ms" in context and context["duration_ms"] is not None:
        context["duration_ms"] = round(context["duration_ms"], 2)

    log_data.update(context)

    logger.bind(**log_data).log(level, f"Job {job_id} | {queue_name} | {event}")
