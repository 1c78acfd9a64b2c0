"""
Registry of supervised background jobs (kubectl port-forwards).
"""
import logging
from typing import Dict, Iterable, List, Optional

import psutil

from ..MODELS.session import JobRecord
from ..RUNNERS.process_runner import ProcessRunner, terminate_pid
from .session_store import SessionStore

logger = logging.getLogger(__name__)

PORT_FORWARD_PATTERN = "kubectl port-forward"


class JobHandle:
    """
    A background process the caller can query, stop, or record.
    """
    def __init__(self, name: str, command: List[str], runner: ProcessRunner,
                 local_port: Optional[int] = None):
        self.name = name
        self.command = command
        self.runner = runner
        self.local_port = local_port

    @property
    def pid(self) -> Optional[int]:
        return self.runner.pid

    def is_running(self) -> bool:
        return self.runner.is_running()

    def status(self) -> str:
        """
        :return: 'running', 'stopped' or 'exited(<code>)'.
        """
        if self.runner.is_running():
            return "running"
        exit_code = self.runner.get_exit_code()
        if exit_code is None:
            return "stopped"
        return f"exited({exit_code})"

    def stop(self):
        self.runner.stop()

    def record(self) -> JobRecord:
        return JobRecord(
            name=self.name,
            pid=self.pid or 0,
            command=self.command,
            local_port=self.local_port,
            log_file=self.runner.log_file,
        )


class JobRegistry:
    """
    Starts background jobs and tears them down as a unit.

    Jobs started by this process are stopped through their handles; jobs
    recorded by an earlier invocation are stopped by pid.
    """
    def __init__(self, store: SessionStore):
        self.store = store
        self.jobs: Dict[str, JobHandle] = {}

    def start(self, name: str, command: List[str], local_port: Optional[int] = None) -> JobHandle:
        """
        Starts a job, replacing a running one of the same name.
        """
        if name in self.jobs:
            self.jobs[name].stop()
        runner = ProcessRunner(name, log_file=self.store.log_file(name))
        runner.start(command)
        handle = JobHandle(name, command, runner, local_port)
        self.jobs[name] = handle
        return handle

    def records(self) -> List[JobRecord]:
        return [handle.record() for handle in self.jobs.values()]

    def status(self) -> Dict[str, str]:
        return {name: handle.status() for name, handle in self.jobs.items()}

    def stop_all(self):
        for handle in reversed(list(self.jobs.values())):
            handle.stop()
        self.jobs.clear()

    @staticmethod
    def record_status(record: JobRecord) -> str:
        """
        Status of a job recorded by another invocation.
        """
        try:
            proc = psutil.Process(record.pid)
            if record.command and proc.cmdline() != record.command:
                return "gone"
            if proc.status() == psutil.STATUS_ZOMBIE:
                return "gone"
        except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess, ValueError):
            return "gone"
        return "running"

    @staticmethod
    def teardown(records: Iterable[JobRecord]) -> int:
        """
        Terminates recorded jobs. Jobs that already exited are skipped.

        :return: Number of processes terminated.
        """
        stopped = 0
        for record in records:
            if record.command:
                done = terminate_pid(record.pid, command=record.command)
            else:
                done = terminate_pid(record.pid, pattern=PORT_FORWARD_PATTERN)
            if done:
                logger.debug("Stopped job %s (pid %d)", record.name, record.pid)
                stopped += 1
        return stopped
