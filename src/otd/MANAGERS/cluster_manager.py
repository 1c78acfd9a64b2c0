"""
Lifecycle of the local k3d cluster.
"""
from typing import List

from ..RUNNERS.command_runner import CommandRunner


class ClusterManager:
    """
    Creates, verifies and deletes a k3d cluster.
    """
    def __init__(self, runner: CommandRunner, name: str):
        """
        :param runner: Runner for the k3d and kubectl commands.
        :param name: Cluster name.
        """
        self.runner = runner
        self.name = name

    def list_clusters(self) -> List[str]:
        clusters = self.runner.output_json(["k3d", "cluster", "list", "-o", "json"], expected=list)
        return [cluster.get("name") for cluster in clusters if isinstance(cluster, dict)]

    def exists(self) -> bool:
        """
        Checks whether the cluster exists.
        """
        return self.name in self.list_clusters()

    def create(self, port: int, agents: int = 2):
        """
        Creates the cluster with the host port mapped to the load balancer's port 80.

        :param port: Host port for ingress.
        :param agents: Number of agent nodes.
        """
        self.runner.run(
            [
                "k3d", "cluster", "create", self.name,
                "--port", f"{port}:80@loadbalancer",
                "--agents", str(agents),
                "--wait",
            ],
            capture=False,
        )

    def delete(self):
        self.runner.run(["k3d", "cluster", "delete", self.name], capture=False)

    def verify(self):
        """
        Fails unless the API server answers and the nodes can be listed.
        """
        self.runner.run(["kubectl", "cluster-info"])
        self.runner.run(["kubectl", "get", "nodes"])
