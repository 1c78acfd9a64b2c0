"""
Shared fakes: a command runner that plays k3d/kubectl/helm, and a job
registry that starts harmless processes instead of kubectl port-forwards.
"""
import json
import subprocess
import sys

import pytest

from otd.MANAGERS.job_registry import JobRegistry
from otd.RUNNERS.command_runner import CommandRunner

SLEEPER = [sys.executable, "-c", "import time; time.sleep(60)"]

AVAILABLE_DEPLOYMENT = json.dumps({
    "spec": {"replicas": 1},
    "status": {"conditions": [{"type": "Available", "status": "True"}], "readyReplicas": 1},
})


class FakeRunner(CommandRunner):
    """
    Records every command and answers from a prefix table. A response may be
    a string (stdout), an exception (raised) or a callable taking the command.
    """
    def __init__(self, responses=None, missing=()):
        super().__init__()
        self.calls = []
        self.inputs = []
        self.responses = dict(responses or {})
        self.missing = set(missing)

    def run(self, command, input=None, capture=True, timeout=None):
        self.calls.append(list(command))
        self.inputs.append(input)
        response = self._lookup(command)
        if callable(response) and not isinstance(response, type):
            response = response(command)
        if isinstance(response, Exception):
            raise response
        return subprocess.CompletedProcess(command, 0, stdout=response or "", stderr="")

    def _lookup(self, command):
        best = None
        for prefix in self.responses:
            if tuple(command[:len(prefix)]) == prefix:
                if best is None or len(prefix) > len(best):
                    best = prefix
        return self.responses.get(best) if best else ""

    def is_available(self, tool):
        return tool not in self.missing

    def called(self, *prefix):
        return [call for call in self.calls if tuple(call[:len(prefix)]) == prefix]


class FakeCluster:
    """
    Minimal k3d/helm state so create, list and delete agree with each other.
    """
    def __init__(self, taken_ports=()):
        self.clusters = set()
        self.releases = {}
        self.taken = set(taken_ports)

    def in_use(self, port):
        return port in self.taken

    def _list(self, command):
        return json.dumps([{"name": name} for name in sorted(self.clusters)])

    def _create(self, command):
        self.clusters.add(command[3])
        mapping = command[command.index("--port") + 1]
        self.taken.add(int(mapping.split(":")[0]))
        return ""

    def _delete(self, command):
        self.clusters.discard(command[3])
        return ""

    def _helm_install(self, command):
        namespace = command[command.index("--namespace") + 1]
        self.releases.setdefault(namespace, set()).add(command[3])
        return ""

    def _helm_list(self, command):
        namespace = command[command.index("-n") + 1]
        return json.dumps([{"name": name} for name in sorted(self.releases.get(namespace, ()))])

    def _helm_uninstall(self, command):
        self.releases.get(command[4], set()).discard(command[2])
        return ""

    def runner(self, **extra):
        responses = {
            ("k3d", "cluster", "list"): self._list,
            ("k3d", "cluster", "create"): self._create,
            ("k3d", "cluster", "delete"): self._delete,
            ("helm", "upgrade", "--install"): self._helm_install,
            ("helm", "list"): self._helm_list,
            ("helm", "uninstall"): self._helm_uninstall,
            ("kubectl", "create", "namespace"): "apiVersion: v1\nkind: Namespace\n",
            ("kubectl", "get", "deployment"): AVAILABLE_DEPLOYMENT,
        }
        responses.update(extra)
        return FakeRunner(responses)


class SleeperRegistry(JobRegistry):
    """
    Starts a sleeping Python process in place of each port-forward.
    """
    def __init__(self, store, cluster=None):
        super().__init__(store)
        self.requested = {}
        self.cluster = cluster

    def start(self, name, command, local_port=None):
        self.requested[name] = command
        if self.cluster is not None and local_port is not None:
            self.cluster.taken.add(local_port)
        return super().start(name, SLEEPER, local_port=local_port)


@pytest.fixture
def fake_cluster():
    return FakeCluster(taken_ports={8080})


@pytest.fixture
def make_runner():
    return FakeRunner


@pytest.fixture
def make_registry():
    return SleeperRegistry
