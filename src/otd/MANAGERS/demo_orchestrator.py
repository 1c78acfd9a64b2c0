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
Orchestration of the demo cluster: bring-up in dependency order, teardown,
and status.
"""
import os
import time
from typing import Callable, Dict, List, Optional, Tuple

from ..errors import CommandError, ConfigError, ReadinessTimeout
from ..MODELS.demo_config import BackendProfile, DemoConfig
from ..MODELS.deployment_plan import HelmRelease, build_plan
from ..MODELS.session import Session
from ..RUNNERS.command_runner import CommandRunner
from ..RUNNERS.process_runner import terminate_matching
from ..UTILS.console import print_status, print_success, print_warning
from ..UTILS.port_finder import allocate, is_port_in_use
from ..UTILS.string_interpolation import ManifestInterpolator
from .cluster_manager import ClusterManager
from .helm_manager import HelmManager
from .job_registry import PORT_FORWARD_PATTERN, JobRegistry
from .kube_manager import KubeManager
from .readiness_waiter import ReadinessTarget, ReadinessWaiter
from .session_store import SessionStore


class DemoOrchestrator:
    """
    Runs every step needed to bring the demo up and down again.

    Steps run one at a time; any failing external command aborts the rest of
    the sequence and leaves what was created in place for inspection.
    """
    def __init__(self,
                 config: DemoConfig,
                 runner: Optional[CommandRunner] = None,
                 base_dir: str = ".",
                 jobs: Optional[JobRegistry] = None,
                 port_in_use: Callable[[int], bool] = is_port_in_use,
                 sleep: Callable[[float], None] = time.sleep):
        """
        Initializes the orchestrator.

        :param config: Demo configuration.
        :param runner: Runner for k3d, kubectl and helm.
        :param base_dir: Working directory for the session record and logs.
        :param jobs: Registry for the port-forward jobs.
        :param port_in_use: Port probe used for allocation.
        :param sleep: Sleep function used while polling.
        """
        self.config = config
        self.base_dir = base_dir
        self.plan = build_plan(config)
        for release in self.plan.releases:
            release.values_files = [os.path.join(base_dir, path) for path in release.values_files]
        self.runner = runner or CommandRunner()
        self.store = SessionStore(config.state_dir, base_dir)
        self.jobs = jobs or JobRegistry(self.store)
        self.port_in_use = port_in_use
        self.sleep = sleep

        self.cluster = ClusterManager(self.runner, config.cluster_name)
        self.helm = HelmManager(self.runner, config.helm_timeout)
        self.kube = KubeManager(self.runner)
        self.waiter = ReadinessWaiter(self.kube.is_ready, config.poll_interval, sleep)
        self.session: Optional[Session] = None

    # ------------------------------------------------------------------ up

    def up(self) -> Session:
        """
        Brings up cluster, backends, demo and port forwards.

        :return: The saved session.
        """
        self.check_prerequisites()
        self.setup_cluster()
        self.setup_helm_repos()
        self.create_namespaces()
        self.deploy_backends()
        self.deploy_demo()
        self.configure_collector()
        self.setup_port_forwarding()
        return self.session

    def check_prerequisites(self):
        """
        Fails before any mutation if a tool or a values file is missing.
        """
        print_status("Checking prerequisites...")
        self.runner.check_prerequisites(self.config.required_tools)
        for release in self.plan.releases:
            for values_file in release.values_files:
                if not os.path.exists(values_file):
                    raise ConfigError(f"Values file {values_file} for release {release.name} not found")
        print_success("All prerequisites are installed")

    def setup_cluster(self) -> int:
        """
        Recreates the k3d cluster with a free host port mapped to its load balancer.

        :return: The chosen ingress port.
        """
        print_status("Setting up K3d cluster...")
        if self.cluster.exists():
            print_status(f"Deleting existing cluster: {self.cluster.name}")
            self.cluster.delete()

        port = allocate(self.config.default_port, self.config.port_window, self.port_in_use)
        if port != self.config.default_port:
            print_warning(f"Port {self.config.default_port} is in use, using port {port} instead")

        print_status(f"Creating K3d cluster: {self.cluster.name}")
        self.cluster.create(port, self.config.agents)

        print_status("Verifying cluster status...")
        self.cluster.verify()

        self.session = Session(
            cluster_name=self.cluster.name,
            profile=self.config.profile.value,
            port=port,
        )
        self.store.save(self.session)
        print_success(f"K3d cluster '{self.cluster.name}' is ready!")
        return port

    def setup_helm_repos(self):
        print_status("Adding Helm repositories...")
        self.helm.add_repos(self.plan.repos)
        print_success("Helm repositories updated")

    def create_namespaces(self):
        print_status("Creating namespaces...")
        for namespace in self.plan.namespaces:
            self.kube.ensure_namespace(namespace)
        print_success("Namespaces created")

    def deploy_backends(self):
        """
        Deploys the profile's backends and waits for their key deployments.
        """
        for manifest in self.plan.manifests:
            name = manifest.template.rsplit(".", 1)[0]
            print_status(f"Deploying {name}...")
            self.kube.apply_manifest(ManifestInterpolator.render(manifest.template, self.template_context()))
            print_success(f"{name} deployed successfully")
            for deployment in manifest.wait_deployments:
                self.wait_for_deployment(manifest.namespace, deployment)

        for release in self.plan.backend_releases:
            self._install(release)

    def deploy_demo(self):
        self._install(self.plan.demo_release)

    def _install(self, release: HelmRelease):
        print_status(f"Deploying {release.name}...")
        self.helm.upgrade_install(release)
        print_success(f"{release.name} deployed successfully")
        for deployment in release.wait_deployments:
            self.wait_for_deployment(release.namespace, deployment)

    def wait_for_deployment(self, namespace: str, deployment: str):
        """
        Blocks until a deployment is available.

        :raises ReadinessTimeout: After config.readiness_timeout seconds.
        """
        print_status(f"Waiting for deployment {deployment} in namespace {namespace}...")
        self.waiter.wait_ready(ReadinessTarget(namespace, deployment), self.config.readiness_timeout)

    def configure_collector(self):
        """
        Points the demo's collector at every backend and restarts it.
        """
        patch = self.plan.collector_patch
        if patch is None:
            return
        print_status("Configuring OTEL Collector to send traces to both Jaeger and Zipkin...")
        relay = ManifestInterpolator.render(patch.template, self.template_context())
        self.kube.patch_configmap(patch.namespace, patch.configmap, {patch.key: relay})
        self.kube.rollout_restart(patch.namespace, patch.deployment)
        self.kube.rollout_status(patch.namespace, patch.deployment, self.config.readiness_timeout)
        print_success("OTEL Collector configured for multi-backend tracing")

    def template_context(self) -> Dict[str, str]:
        context = dict(os.environ)
        context.update({
            "DEMO_NAMESPACE": self.config.demo_namespace,
            "ZIPKIN_NAMESPACE": self.config.backend_namespace,
            "SIGNOZ_NAMESPACE": self.config.backend_namespace,
        })
        return context

    def setup_port_forwarding(self):
        """
        Starts one supervised port-forward per plan entry and records them in the session.
        """
        print_status("Setting up port forwarding...")
        if self.session is None:
            self.session = self.store.load() or Session(
                cluster_name=self.cluster.name, profile=self.config.profile.value)

        if JobRegistry.teardown(self.session.jobs) + terminate_matching(PORT_FORWARD_PATTERN):
            self.sleep(2)
        self.jobs.stop_all()

        for forward in self.plan.forwards:
            local_port = allocate(forward.local_port, self.config.port_window, self.port_in_use)
            command = [
                "kubectl", "port-forward", f"svc/{forward.service}",
                f"{local_port}:{forward.remote_port}", "-n", forward.namespace,
            ]
            self.jobs.start(forward.name, command, local_port=local_port)

        print_status("Verifying port forwarding...")
        port_waiter = ReadinessWaiter(self.kube.is_ready, min(1.0, self.config.poll_interval), self.sleep)
        for name, handle in self.jobs.jobs.items():
            try:
                port_waiter.wait_port_listening(handle.local_port, self.config.forward_settle_timeout,
                                                self.port_in_use)
            except ReadinessTimeout:
                print_warning(
                    f"Port forward {name} is not listening on {handle.local_port} yet "
                    f"({handle.status()}), see {handle.runner.log_file}"
                )

        self.session.jobs = self.jobs.records()
        self.store.save(self.session)
        print_success("Port forwarding established")

    def stop_port_forwarding(self):
        """
        Stops the forwards started by this process and drops them from the session.
        """
        self.jobs.stop_all()
        if self.session is not None:
            self.session.jobs = []
            self.store.save(self.session)

    def access_links(self, session: Optional[Session] = None) -> List[Tuple[str, str]]:
        """
        Labels and URLs of the demo's user interfaces.
        """
        session = session or self.session
        links = []
        for link in self.plan.links:
            record = session.job(link.forward) if session else None
            port = record.local_port if record else None
            if port is None:
                forward = next(f for f in self.plan.forwards if f.name == link.forward)
                port = forward.local_port
            links.append((link.label, f"http://localhost:{port}{link.path}"))
        return links

    # ---------------------------------------------------------------- down

    def down(self, releases: Optional[bool] = None):
        """
        Tears everything down. Absent resources are warnings, so running this
        twice in a row is fine.

        :param releases: Uninstall Helm releases and delete namespaces before
                         deleting the cluster; defaults to True for the signoz profile.
        """
        if releases is None:
            releases = self.config.profile == BackendProfile.SIGNOZ

        try:
            session = self.store.load()
        except ConfigError as e:
            print_warning(str(e))
            session = None

        print_status("Stopping port forwarding processes...")
        self.jobs.stop_all()
        records = (session.jobs if session else []) + self.store.legacy_jobs()
        JobRegistry.teardown(records)
        terminate_matching(PORT_FORWARD_PATTERN)
        print_success("Port forwarding stopped")

        cluster = self.cluster
        if session and session.cluster_name != cluster.name:
            cluster = ClusterManager(self.runner, session.cluster_name)

        exists = self._cluster_exists(cluster)
        if exists and releases:
            self._remove_releases()

        print_status("Deleting K3d cluster...")
        if exists:
            cluster.delete()
            print_success("K3d cluster deleted")
        else:
            print_warning("K3d cluster not found")

        self.store.clear()
        self.session = None
        print_success("Temporary files removed")

    def _cluster_exists(self, cluster: ClusterManager) -> bool:
        try:
            return cluster.exists()
        except CommandError:
            return False

    def _remove_releases(self):
        print_status("Uninstalling Helm releases...")
        for release in self.plan.releases:
            if self.helm.release_exists(release.name, release.namespace):
                print_status(f"Uninstalling {release.name}...")
                self.helm.uninstall(release.name, release.namespace)
                print_success(f"{release.name} uninstalled")
            else:
                print_warning(f"{release.name} not found")

        print_status("Deleting namespaces...")
        for namespace in self.plan.namespaces:
            self.kube.delete_namespace(namespace)
        print_success("Namespaces deleted")

    # -------------------------------------------------------------- status

    def status(self) -> Dict[str, object]:
        """
        Summarizes the saved session, its jobs and whether the cluster exists.
        Without a session, reports the port left in a legacy `.demo-port` marker.
        """
        session = self.store.load()
        cluster = self.cluster
        if session and session.cluster_name != cluster.name:
            cluster = ClusterManager(self.runner, session.cluster_name)
        return {
            "cluster": cluster.name,
            "cluster_exists": self._cluster_exists(cluster),
            "session": session,
            "jobs": {job.name: JobRegistry.record_status(job) for job in session.jobs} if session else {},
            "legacy_port": None if session else self.store.legacy_port(),
        }
