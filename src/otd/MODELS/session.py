"""
Models for the state one `up` hands to a later `down`.
"""
from datetime import datetime, timezone
from typing import List, Optional

from pydantic import BaseModel, Field


class JobRecord(BaseModel):
    """
    A background process started by `up`.
    """
    name: str
    pid: int
    command: List[str] = []
    local_port: Optional[int] = None
    log_file: Optional[str] = None


class Session(BaseModel):
    """
    Everything needed to find and tear down what `up` created.
    """
    cluster_name: str
    profile: str
    port: Optional[int] = None
    jobs: List[JobRecord] = []
    created_at: str = Field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
    )

    def job(self, name: str) -> Optional[JobRecord]:
        for record in self.jobs:
            if record.name == name:
                return record
        return None
