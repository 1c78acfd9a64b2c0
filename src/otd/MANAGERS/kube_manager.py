"""
kubectl operations: namespaces, manifests, config patches, rollouts and readiness.
"""
import json
from typing import Dict

from ..RUNNERS.command_runner import CommandRunner
from .readiness_waiter import ReadinessTarget


class KubeManager:
    """
    Wraps the kubectl verbs the demo needs.
    """
    def __init__(self, runner: CommandRunner):
        self.runner = runner

    def ensure_namespace(self, namespace: str):
        """
        Creates the namespace, or leaves it alone if it already exists.
        """
        manifest = self.runner.output(
            ["kubectl", "create", "namespace", namespace, "--dry-run=client", "-o", "yaml"]
        )
        self.apply_manifest(manifest)

    def apply_manifest(self, manifest: str):
        """
        Applies manifest text via stdin.
        """
        self.runner.run(["kubectl", "apply", "-f", "-"], input=manifest)

    def patch_configmap(self, namespace: str, name: str, data: Dict[str, str]):
        """
        Replaces keys of a config map's data with a strategic merge patch.
        """
        patch = json.dumps({"data": data})
        self.runner.run([
            "kubectl", "patch", "configmap", name, "-n", namespace,
            "--type=strategic", "-p", patch,
        ])

    def rollout_restart(self, namespace: str, deployment: str):
        self.runner.run(["kubectl", "rollout", "restart", f"deployment/{deployment}", "-n", namespace])

    def rollout_status(self, namespace: str, deployment: str, timeout: float):
        """
        Blocks until the deployment's rollout has finished.
        """
        self.runner.run([
            "kubectl", "rollout", "status", f"deployment/{deployment}", "-n", namespace,
            f"--timeout={int(timeout)}s",
        ], capture=False)

    def delete_namespace(self, namespace: str):
        self.runner.run(["kubectl", "delete", "namespace", namespace, "--ignore-not-found=true"])

    def is_ready(self, target: ReadinessTarget) -> bool:
        """
        Reads the target's status once.

        Deployments are ready when their Available condition is True, other
        workloads when readyReplicas has reached replicas.

        :raises CommandError: If kubectl cannot read the resource or prints
                              something other than a JSON object.
        """
        resource = self.runner.output_json([
            "kubectl", "get", target.kind, target.name, "-n", target.namespace, "-o", "json",
        ])
        status = resource.get("status") or {}
        spec = resource.get("spec") or {}

        if target.kind == "deployment":
            for condition in status.get("conditions", []):
                if condition.get("type") == "Available":
                    return condition.get("status") == "True"
            return False

        wanted = spec.get("replicas", 1)
        return status.get("readyReplicas", 0) >= wanted
