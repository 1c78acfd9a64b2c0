# Copyright 2024 Michael Maillet, Damien Davison, Sacha Davison
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Background processes with log redirection and lifecycle management, plus
termination of processes started by an earlier invocation.
"""
import logging
import os
import subprocess
import sys
from typing import List, Optional

import psutil

logger = logging.getLogger(__name__)


class ProcessRunner:
    """
    Manages the execution of a single background process.
    """
    def __init__(self, name: str, log_file: Optional[str] = None):
        """
        Initializes the process runner.

        Args:
            name (str): Identifier for the process.
            log_file (Optional[str]): Path to a file where stdout/stderr will be redirected.
        """
        self.name = name
        self.log_file = log_file
        self.process = None
        self.log_handle = None

    @property
    def pid(self) -> Optional[int]:
        return self.process.pid if self.process else None

    def start(self, command: List[str], env: Optional[dict] = None):
        """
        Starts the process in its own session so a Ctrl+C in the terminal
        does not reach it.

        Args:
            command (List[str]): Command and arguments to execute.
            env (Optional[dict]): Environment variables for the process.
        """
        stdout = sys.stdout
        stderr = sys.stderr

        if self.log_file:
            log_dir = os.path.dirname(self.log_file)
            if log_dir:
                os.makedirs(log_dir, exist_ok=True)
            self.log_handle = open(self.log_file, 'a')
            stdout = self.log_handle
            stderr = self.log_handle

        logger.debug("[%s] Starting command: %s", self.name, " ".join(command))

        try:
            self.process = subprocess.Popen(
                command,
                env=env,
                stdin=subprocess.DEVNULL,
                stdout=stdout,
                stderr=stderr,
                text=True,
                shell=False,
                start_new_session=True,
            )
        except OSError:
            self._close_log()
            raise

    def stop(self, timeout: int = 10):
        """
        Stops the process by sending SIGTERM, followed by SIGKILL if it doesn't stop.

        Args:
            timeout (int): Seconds to wait for termination before killing.
        """
        if self.process and self.process.poll() is None:
            logger.debug("[%s] Stopping process %d", self.name, self.process.pid)
            self.process.terminate()
            try:
                self.process.wait(timeout=timeout)
            except subprocess.TimeoutExpired:
                logger.debug("[%s] Process did not terminate, killing...", self.name)
                self.process.kill()
                self.process.wait()
        self._close_log()

    def _close_log(self):
        if self.log_handle:
            self.log_handle.close()
            self.log_handle = None

    def is_running(self) -> bool:
        """
        Checks if the process is currently running.

        Returns:
            bool: True if running, False otherwise.
        """
        return self.process is not None and self.process.poll() is None

    def get_exit_code(self) -> Optional[int]:
        """
        Gets the exit code of the process.

        Returns:
            Optional[int]: Exit code if process finished, None otherwise.
        """
        if self.process:
            return self.process.poll()
        return None


def _matches(proc: psutil.Process, command: Optional[List[str]], pattern: Optional[str]) -> bool:
    try:
        cmdline = proc.cmdline()
    except (psutil.NoSuchProcess, psutil.ZombieProcess):
        return False
    except psutil.AccessDenied:
        return False
    if command:
        return cmdline == list(command)
    if pattern:
        return pattern in " ".join(cmdline)
    return True


def terminate_pid(pid: int,
                  command: Optional[List[str]] = None,
                  pattern: Optional[str] = None,
                  timeout: float = 5) -> bool:
    """
    Terminates a process recorded by an earlier invocation.

    The process is only touched if its command line still equals the given
    command, or contains the given pattern, so a recycled pid is left alone.

    Returns:
        bool: True if a process was terminated, False if there was nothing to stop.
    """
    try:
        proc = psutil.Process(pid)
    except (psutil.NoSuchProcess, ValueError):
        # ValueError: not a valid pid at all
        return False
    if not _matches(proc, command, pattern):
        logger.debug("Pid %d no longer runs %s, leaving it alone", pid, command or pattern)
        return False
    return _terminate([proc], timeout) > 0


def terminate_matching(pattern: str, timeout: float = 5) -> int:
    """
    Terminates every process whose command line contains the pattern,
    like `pkill -f`.

    Returns:
        int: Number of processes terminated.
    """
    me = os.getpid()
    victims = []
    for proc in psutil.process_iter(attrs=['pid', 'cmdline']):
        cmdline = proc.info.get('cmdline')
        if not cmdline or proc.info['pid'] == me:
            continue
        if pattern in " ".join(cmdline):
            victims.append(proc)
    return _terminate(victims, timeout)


def _terminate(procs: List[psutil.Process], timeout: float) -> int:
    stopped = []
    for proc in procs:
        try:
            proc.terminate()
            stopped.append(proc)
        except psutil.NoSuchProcess:
            continue
        except psutil.AccessDenied:
            logger.debug("Not allowed to terminate pid %d", proc.pid)
    _, alive = psutil.wait_procs(stopped, timeout=timeout)
    for proc in alive:
        try:
            proc.kill()
        except psutil.NoSuchProcess:
            pass
    return len(stopped)
