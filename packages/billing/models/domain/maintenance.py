"""Results of scheduled maintenance runs."""

from pydantic import BaseModel


class SweepResult(BaseModel):
    expired: int = 0
    past_due: int = 0
    free_windows_rolled: int = 0
    pending_events_purged: int = 0
    skipped: int = 0
