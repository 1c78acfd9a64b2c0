"""
Models describing what gets deployed for a profile, and the builder that
derives them from a DemoConfig.
"""
from typing import List, Optional

from pydantic import BaseModel

from .demo_config import BackendProfile, DemoConfig

OTEL_REPO_URL = "https://open-telemetry.github.io/opentelemetry-helm-charts"
SIGNOZ_REPO_URL = "https://charts.signoz.io"


class HelmRepo(BaseModel):
    name: str
    url: str


class HelmRelease(BaseModel):
    """
    A chart installed with `helm upgrade --install`, plus the deployments
    that must be available before the next step runs.
    """
    name: str
    chart: str
    namespace: str
    values_files: List[str] = []
    wait_deployments: List[str] = []


class Manifest(BaseModel):
    """
    A template from the MANIFESTS directory applied with `kubectl apply`.
    """
    template: str
    namespace: str
    wait_deployments: List[str] = []


class CollectorPatch(BaseModel):
    """
    Replacement collector pipeline written into the demo's config map.
    """
    namespace: str
    template: str = "collector-relay.yaml"
    configmap: str = "otel-collector"
    key: str = "relay"
    deployment: str = "otel-collector"


class PortForward(BaseModel):
    """
    A `kubectl port-forward` kept running in the background.
    """
    name: str
    service: str
    namespace: str
    remote_port: int
    local_port: int


class AccessLink(BaseModel):
    label: str
    forward: str
    path: str = ""


class DeploymentPlan(BaseModel):
    """
    Ordered description of everything `up` creates.
    """
    profile: BackendProfile
    repos: List[HelmRepo]
    namespaces: List[str]
    manifests: List[Manifest] = []
    backend_releases: List[HelmRelease] = []
    demo_release: HelmRelease
    collector_patch: Optional[CollectorPatch] = None
    forwards: List[PortForward] = []
    links: List[AccessLink] = []

    @property
    def releases(self) -> List[HelmRelease]:
        return [self.demo_release] + self.backend_releases


def build_plan(config: DemoConfig) -> DeploymentPlan:
    """
    Derives the deployment plan for the configured profile.

    :param config: The demo configuration.
    :return: The plan consumed by the orchestrator.
    """
    demo_ns = config.demo_namespace
    backend_ns = config.backend_namespace
    repos = [HelmRepo(name="open-telemetry", url=OTEL_REPO_URL)]

    if config.profile == BackendProfile.SIGNOZ:
        repos.append(HelmRepo(name="signoz", url=SIGNOZ_REPO_URL))
        release = config.demo_release
        return DeploymentPlan(
            profile=config.profile,
            repos=repos,
            namespaces=[demo_ns, backend_ns],
            backend_releases=[
                HelmRelease(
                    name="signoz",
                    chart="signoz/signoz",
                    namespace=backend_ns,
                    values_files=config.backend_values_files,
                    wait_deployments=[
                        "signoz-otel-collector",
                        "signoz-query-service",
                        "signoz-frontend",
                    ],
                ),
            ],
            demo_release=HelmRelease(
                name=release,
                chart="open-telemetry/opentelemetry-demo",
                namespace=demo_ns,
                values_files=config.demo_values_files,
                wait_deployments=[f"{release}-frontend", f"{release}-frontendproxy"],
            ),
            forwards=[
                PortForward(name="demo", service=f"{release}-frontendproxy", namespace=demo_ns,
                            remote_port=8080, local_port=config.default_port),
                PortForward(name="signoz", service="signoz-frontend", namespace=backend_ns,
                            remote_port=3301, local_port=3301),
            ],
            links=[
                AccessLink(label="Demo Store", forward="demo"),
                AccessLink(label="Grafana", forward="demo", path="/grafana"),
                AccessLink(label="Jaeger UI", forward="demo", path="/jaeger/ui"),
                AccessLink(label="Feature Flags", forward="demo", path="/feature"),
                AccessLink(label="Load Generator", forward="demo", path="/loadgen"),
                AccessLink(label="SigNoz", forward="signoz"),
            ],
        )

    return DeploymentPlan(
        profile=config.profile,
        repos=repos,
        namespaces=[demo_ns, backend_ns],
        manifests=[Manifest(template="zipkin.yaml", namespace=backend_ns, wait_deployments=["zipkin"])],
        demo_release=HelmRelease(
            name=config.demo_release,
            chart="open-telemetry/opentelemetry-demo",
            namespace=demo_ns,
            values_files=config.demo_values_files,
            wait_deployments=["frontend", "frontend-proxy"],
        ),
        collector_patch=CollectorPatch(namespace=demo_ns),
        forwards=[
            PortForward(name="demo", service="frontend-proxy", namespace=demo_ns,
                        remote_port=8080, local_port=config.default_port),
            PortForward(name="zipkin", service="zipkin", namespace=backend_ns,
                        remote_port=9411, local_port=9411),
        ],
        links=[
            AccessLink(label="Demo Store", forward="demo"),
            AccessLink(label="Jaeger (Backend #1)", forward="demo", path="/jaeger/ui/"),
            AccessLink(label="Zipkin (Backend #2)", forward="zipkin"),
            AccessLink(label="Grafana Dashboards", forward="demo", path="/grafana/"),
            AccessLink(label="Traffic Generator", forward="demo", path="/loadgen/"),
        ],
    )
