"""
Pipeline lifetime for CLI commands.

A CLI process is short lived, so retries are kept in an in-memory scheduler and
the due ones (delay 0, e.g. ``retry-all``) are delivered before the command
exits. Retries with a backoff delay stay FAILED in the database and are picked
up by the next ``documents retry-all`` run.
"""

from contextvars import ContextVar

from opensri.core.pipeline import FiscalPipeline
from opensri.core.submission import InMemoryRetryScheduler
from opensri.utils.config import get_settings
from opensri.utils.logging import get_logger

logger = get_logger(__name__)

_pipeline_context: ContextVar[FiscalPipeline | None] = ContextVar(
    "_pipeline_context", default=None
)


def get_pipeline() -> FiscalPipeline:
    """Return the pipeline for this process, assembling it on first use."""
    pipeline = _pipeline_context.get()
    if pipeline is None:
        pipeline = FiscalPipeline.from_settings(
            get_settings(), scheduler=InMemoryRetryScheduler()
        )
        _pipeline_context.set(pipeline)
        logger.debug("cli_pipeline_initialized", **pipeline.event_bus.get_stats())
    return pipeline


def set_pipeline(pipeline: FiscalPipeline | None) -> None:
    """Install a preassembled pipeline (tests) or drop the current one."""
    _pipeline_context.set(pipeline)


def deliver_due_retries(pipeline: FiscalPipeline) -> int:
    """Run retries that are already due, when the scheduler supports it."""
    scheduler = pipeline.scheduler
    if isinstance(scheduler, InMemoryRetryScheduler):
        return scheduler.run_due()
    return 0
