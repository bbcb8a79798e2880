import enum


class JobStatus(enum.Enum):
    """Lifecycle of an ingestion job."""
    pending = "pending"
    running = "running"
    completed = "completed"
    partial = "partial"
    failed = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({JobStatus.completed, JobStatus.partial, JobStatus.failed})
