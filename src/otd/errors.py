"""
Exception types raised by the cluster driver.
"""
from typing import List, Optional, Sequence


class OtdError(Exception):
    """Base class for every error the CLI reports to the operator."""


class ConfigError(OtdError):
    """Invalid configuration file, value, or missing values file."""


class MissingPrerequisites(OtdError):
    """
    One or more required command line tools are not on PATH.
    """
    INSTALL_HINTS = {
        "k3d": "curl -s https://raw.githubusercontent.com/k3d-io/k3d/main/install.sh | bash",
        "kubectl": "https://kubernetes.io/docs/tasks/tools/install-kubectl/",
        "helm": "https://helm.sh/docs/intro/install/",
    }

    def __init__(self, tools: Sequence[str]):
        self.tools = list(tools)
        lines = [f"Missing required tools: {' '.join(self.tools)}"]
        for tool in self.tools:
            hint = self.INSTALL_HINTS.get(tool)
            if hint:
                lines.append(f"  - {tool}: {hint}")
        super().__init__("\n".join(lines))


class NoPortAvailable(OtdError):
    """
    Every port in the scanned window is taken.
    """
    def __init__(self, preferred: int, window: int):
        self.preferred = preferred
        self.window = window
        super().__init__(
            f"Could not find available port in range {preferred}-{preferred + window}"
        )


class ReadinessTimeout(OtdError):
    """
    A readiness target did not report ready before its timeout elapsed.
    """
    def __init__(self, target: str, timeout: float):
        self.target = target
        self.timeout = timeout
        super().__init__(f"Timed out after {timeout:g}s waiting for {target} to become ready")


class CommandError(OtdError):
    """
    An external command exited with a non-zero status, or exited zero but
    printed output that could not be used (returncode 0).
    """
    def __init__(self, command: List[str], returncode: int, stderr: Optional[str] = None):
        self.command = list(command)
        self.returncode = returncode
        self.stderr = (stderr or "").strip()
        if returncode == 0:
            message = f"Command returned unusable output: {' '.join(self.command)}"
        else:
            message = f"Command failed with exit code {returncode}: {' '.join(self.command)}"
        if self.stderr:
            message += f"\n{self.stderr}"
        super().__init__(message)
