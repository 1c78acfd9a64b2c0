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
Execution of external command line tools (k3d, kubectl, helm).
"""
import json
import logging
import shutil
import subprocess
from typing import Dict, Iterable, List, Optional

from ..errors import CommandError, MissingPrerequisites

logger = logging.getLogger(__name__)


class CommandRunner:
    """
    Runs a command to completion and turns a non-zero exit status into a
    CommandError. Failures are never retried.
    """
    def __init__(self, env: Optional[Dict[str, str]] = None):
        """
        Initializes the command runner.

        Args:
            env (Optional[Dict[str, str]]): Environment for child processes;
                the current environment when omitted.
        """
        self.env = env

    def run(self,
            command: List[str],
            input: Optional[str] = None,
            capture: bool = True,
            timeout: Optional[float] = None) -> subprocess.CompletedProcess:
        """
        Runs a command and waits for it.

        Args:
            command (List[str]): Command and arguments to execute.
            input (Optional[str]): Text fed to the command's stdin.
            capture (bool): Capture stdout/stderr instead of passing them
                through to the terminal.
            timeout (Optional[float]): Seconds before the command is killed.

        Returns:
            subprocess.CompletedProcess: The finished process.

        Raises:
            CommandError: If the command exits non-zero, cannot be found, or
                times out.
        """
        logger.debug("Running: %s", " ".join(command))
        try:
            result = subprocess.run(
                command,
                input=input,
                env=self.env,
                capture_output=capture,
                timeout=timeout,
                text=True,
                shell=False,
            )
        except FileNotFoundError as e:
            raise CommandError(command, 127, str(e)) from e
        except subprocess.TimeoutExpired as e:
            raise CommandError(command, -1, f"timed out after {timeout}s") from e

        if result.returncode != 0:
            logger.debug("Exit code %d from: %s", result.returncode, " ".join(command))
            raise CommandError(command, result.returncode, result.stderr if capture else None)
        return result

    def output(self, command: List[str], **kwargs) -> str:
        """
        Runs a command and returns its stdout.
        """
        return self.run(command, **kwargs).stdout or ""

    def output_json(self, command: List[str], expected: type = dict):
        """
        Runs a command that prints JSON (`-o json`) and parses its stdout.

        Args:
            command (List[str]): Command and arguments to execute.
            expected (type): dict or list; empty output yields an empty one.

        Raises:
            CommandError: If the command fails or prints something that is
                not a JSON document of the expected type.
        """
        output = self.output(command)
        if not output.strip():
            return expected()
        try:
            data = json.loads(output)
        except ValueError as e:
            raise CommandError(command, 0, f"Unparseable JSON output: {e}") from e
        if not isinstance(data, expected):
            raise CommandError(command, 0, f"Expected a JSON {expected.__name__}, got {type(data).__name__}")
        return data

    @staticmethod
    def is_available(tool: str) -> bool:
        return shutil.which(tool) is not None

    def check_prerequisites(self, tools: Iterable[str]):
        """
        Verifies every tool is on PATH before anything is changed.

        Raises:
            MissingPrerequisites: Naming all tools that are missing.
        """
        missing = [tool for tool in tools if not self.is_available(tool)]
        if missing:
            raise MissingPrerequisites(missing)
