"""
Helm repositories and releases.
"""
from typing import Iterable

from ..MODELS.deployment_plan import HelmRelease, HelmRepo
from ..RUNNERS.command_runner import CommandRunner


class HelmManager:
    """
    Wraps the helm verbs the demo needs.
    """
    def __init__(self, runner: CommandRunner, timeout: str = "20m"):
        """
        :param runner: Runner for helm commands.
        :param timeout: Value for `helm --timeout`, e.g. "20m".
        """
        self.runner = runner
        self.timeout = timeout

    def add_repos(self, repos: Iterable[HelmRepo]):
        """
        Adds every repository, replacing an existing one of the same name, then updates the index.
        """
        for repo in repos:
            self.runner.run(["helm", "repo", "add", repo.name, repo.url, "--force-update"])
        self.runner.run(["helm", "repo", "update"])

    def upgrade_install(self, release: HelmRelease):
        """
        Installs or upgrades a release and waits for helm to report it deployed.
        """
        command = [
            "helm", "upgrade", "--install", release.name, release.chart,
            "--namespace", release.namespace,
        ]
        for values_file in release.values_files:
            command += ["--values", values_file]
        command += ["--wait", "--timeout", self.timeout]
        self.runner.run(command, capture=False)

    def release_exists(self, name: str, namespace: str) -> bool:
        releases = self.runner.output_json(["helm", "list", "-n", namespace, "-o", "json"], expected=list)
        return any(isinstance(item, dict) and item.get("name") == name for item in releases)

    def uninstall(self, name: str, namespace: str):
        self.runner.run(["helm", "uninstall", name, "-n", namespace])
