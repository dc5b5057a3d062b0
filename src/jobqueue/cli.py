"""
Queue Status CLI
Command-line tool to inspect the durable (SQS) queues and enqueue test jobs.

    jobqueue-status stats generate transcription
    jobqueue-status enqueue generate '{"proposalId": "p-1", "tenantId": "t-1"}'

The in-memory provider only exists inside a worker process, so both
commands require QUEUE_PROVIDER=sqs.
"""
import asyncio
import json

import click
from loguru import logger

from jobqueue.queue import (
    InMemoryQueueProvider,
    QueueConfigError,
    QueueError,
    QueueProvider,
    create_queue_provider,
)
from jobqueue.utils.observability import configure_logging


def open_provider() -> QueueProvider:
    """
    Build the configured provider, refusing the in-memory one.

    Raises:
        QueueConfigError: If QUEUE_PROVIDER selects the in-memory queue
    """
    provider = create_queue_provider()
    if isinstance(provider, InMemoryQueueProvider):
        raise QueueConfigError(
            "jobqueue-status needs QUEUE_PROVIDER=sqs: the in-memory queue "
            "is private to the worker process"
        )
    return provider


async def show_stats(queue_names: tuple[str, ...]) -> None:
    """Print statistics for each queue as JSON."""
    provider = open_provider()
    try:
        for queue_name in queue_names:
            stats = await provider.get_stats(queue_name)
            click.echo(json.dumps(stats.model_dump(), indent=2))
    finally:
        await provider.close()


async def enqueue(queue_name: str, payload) -> str:
    """Add one job and return its ID."""
    provider = open_provider()
    try:
        return await provider.add(queue_name, payload)
    finally:
        await provider.close()


@click.group(help="Inspect background job queues.")
def cli():
    configure_logging()


# ---------- Stats ----------
@cli.command("stats", help="Show queue statistics")
@click.argument("queues", nargs=-1, required=True)
def stats_cmd(queues):
    try:
        asyncio.run(show_stats(queues))
    except QueueError as e:
        logger.error(f"Queue command failed: {e}")
        click.secho(f"Error: {e}", fg="red", err=True)
        raise SystemExit(1)


# ---------- Enqueue ----------
@cli.command("enqueue", help="Add a job to a queue")
@click.argument("queue")
@click.argument("payload")
def enqueue_cmd(queue, payload):
    try:
        data = json.loads(payload)
    except json.JSONDecodeError as e:
        raise click.BadParameter(f"Invalid JSON payload: {e}", param_hint="PAYLOAD")

    try:
        job_id = asyncio.run(enqueue(queue, data))
    except QueueError as e:
        logger.error(f"Queue command failed: {e}")
        click.secho(f"Error: {e}", fg="red", err=True)
        raise SystemExit(1)

    click.echo(job_id)


def main():
    cli()


if __name__ == "__main__":
    main()
