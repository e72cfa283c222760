from .dispatcher import RemoteRunClient, RemoteRunError, dispatch_due_jobs
from .repository import ScheduledJobRepository, calculate_next_run_at

__all__ = [
    'RemoteRunClient',
    'RemoteRunError',
    'dispatch_due_jobs',
    'ScheduledJobRepository',
    'calculate_next_run_at',
]
