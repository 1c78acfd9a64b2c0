"""
Persistence of the session record between `up` and `down`.
"""
import logging
import os
import shutil
from typing import Dict, List, Optional

from pydantic import ValidationError

from ..errors import ConfigError
from ..MODELS.session import JobRecord, Session

logger = logging.getLogger(__name__)

SESSION_FILE = "session.json"

# Single-value marker files written by the shell version of the demo tooling
LEGACY_PORT_FILE = ".demo-port"
LEGACY_PID_FILES: Dict[str, str] = {
    "demo": ".demo-pf.pid",
    "zipkin": ".zipkin-pf.pid",
    "signoz": ".signoz-pf.pid",
}


class SessionStore:
    """
    Reads and writes the session record as one JSON document.

    Only `up` writes it; any later invocation may read and delete it.
    """
    def __init__(self, state_dir: str = ".otd", base_dir: str = "."):
        """
        :param state_dir: Directory holding session.json and the job logs.
        :param base_dir: Working directory the state directory and legacy markers live in.
        """
        self.base_dir = base_dir
        self.state_dir = os.path.join(base_dir, state_dir)
        self.path = os.path.join(self.state_dir, SESSION_FILE)
        self.log_dir = os.path.join(self.state_dir, "logs")

    def log_file(self, job_name: str) -> str:
        return os.path.join(self.log_dir, f"{job_name}.log")

    def exists(self) -> bool:
        return os.path.exists(self.path)

    def save(self, session: Session):
        os.makedirs(self.state_dir, exist_ok=True)
        tmp_path = self.path + ".tmp"
        with open(tmp_path, 'w') as f:
            f.write(session.model_dump_json(indent=2))
        os.replace(tmp_path, self.path)

    def load(self) -> Optional[Session]:
        """
        Loads the session record.

        :return: The session, or None if no session was saved.
        :raises ConfigError: If the file exists but is not a valid session.
        """
        if not self.exists():
            return None
        with open(self.path, 'r') as f:
            content = f.read()
        try:
            return Session.model_validate_json(content)
        except ValidationError as e:
            raise ConfigError(f"Corrupt session file {self.path}: {e}") from e

    def legacy_port(self) -> Optional[int]:
        return self._read_int(LEGACY_PORT_FILE)

    def legacy_jobs(self) -> List[JobRecord]:
        """
        Job records for pid marker files left by the shell tooling.
        """
        jobs = []
        for name, marker in LEGACY_PID_FILES.items():
            pid = self._read_int(marker)
            if pid is not None:
                jobs.append(JobRecord(name=name, pid=pid))
        return jobs

    def clear(self) -> List[str]:
        """
        Deletes the session record, the job logs and every legacy marker file.
        The state directory itself goes too once nothing else is left in it.

        :return: Paths that were removed.
        """
        removed = []
        candidates = [self.path, os.path.join(self.base_dir, LEGACY_PORT_FILE)]
        candidates += [os.path.join(self.base_dir, marker) for marker in LEGACY_PID_FILES.values()]
        for path in candidates:
            if os.path.exists(path):
                os.remove(path)
                removed.append(path)
        if os.path.isdir(self.log_dir):
            shutil.rmtree(self.log_dir)
            removed.append(self.log_dir)
        if os.path.isdir(self.state_dir) and not os.listdir(self.state_dir):
            os.rmdir(self.state_dir)
        return removed

    def _read_int(self, marker: str) -> Optional[int]:
        path = os.path.join(self.base_dir, marker)
        if not os.path.exists(path):
            return None
        with open(path, 'r') as f:
            text = f.read().strip()
        try:
            value = int(text)
        except ValueError:
            value = 0
        # Ports and pids are both positive
        if value <= 0:
            logger.debug("Ignoring marker %s with content %r", path, text)
            return None
        return value
