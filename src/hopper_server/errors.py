"""Exceptions raised by the job queue."""


class HopperError(Exception):
    """Base class for queue errors."""


class InvalidJobError(HopperError, ValueError):
    """Job type or payload rejected at the enqueue boundary."""


class JobNotFoundError(HopperError, LookupError):
    def __init__(self, job_id: int):
        super().__init__(f"Job {job_id} not found")
        self.job_id = job_id


class InvalidTransitionError(HopperError):
    """Operator action not allowed from the job's current status."""

    def __init__(self, job_id: int, status: str, action: str):
        super().__init__(f"Cannot {action} job {job_id} in status '{status}'")
        self.job_id = job_id
        self.status = status
        self.action = action


class DedupeConflictError(HopperError):
    """Another active job already holds the dedupe key."""

    def __init__(self, dedupe_key: str, holder_id: int | None):
        super().__init__(f"Job {holder_id} is already active for dedupe key '{dedupe_key}'")
        self.dedupe_key = dedupe_key
        self.holder_id = holder_id


class PermanentJobError(HopperError):
    """Raised by a handler when retrying cannot help."""