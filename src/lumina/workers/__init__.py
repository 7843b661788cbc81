"""Background workers for async processing tasks."""

from lumina.workers.generation_poller import GenerationPoller, recover_orphaned_jobs
from lumina.workers.rate_limit_sweeper import run_rate_limit_sweeper

__all__ = [
    "GenerationPoller",
    "recover_orphaned_jobs",
    "run_rate_limit_sweeper",
]
