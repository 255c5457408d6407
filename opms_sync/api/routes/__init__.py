"""FastAPI route modules.

Exports all route modules for inclusion in the main application.
"""

from opms_sync.api.routes import changes, dry_run, jobs, pricing_pull, queue, webhook

__all__ = [
    "changes",
    "dry_run",
    "jobs",
    "pricing_pull",
    "queue",
    "webhook",
]
