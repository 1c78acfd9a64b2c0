"""
Models for the tunable settings of a demo deployment.
"""
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field, model_validator


class BackendProfile(str, Enum):
    """
    Backend combination deployed next to the OpenTelemetry Demo.
    """
    ZIPKIN = "zipkin"
    SIGNOZ = "signoz"


class DemoConfig(BaseModel):
    """
    Complete configuration for one demo cluster.
    """
    cluster_name: str = "otel-demo"
    agents: int = Field(default=2, ge=0)

    # Ingress port mapped onto the k3d load balancer
    default_port: int = Field(default=8080, ge=1, le=65535)
    port_window: int = Field(default=100, ge=0)

    profile: BackendProfile = BackendProfile.ZIPKIN
    demo_namespace: str = "otel-demo"
    backend_namespace: Optional[str] = None

    demo_release: str = "otel-demo"
    demo_values_files: List[str] = []
    backend_values_files: List[str] = []
    helm_timeout: str = "20m"

    readiness_timeout: float = Field(default=600.0, gt=0)
    poll_interval: float = Field(default=5.0, gt=0)
    forward_settle_timeout: float = Field(default=15.0, ge=0)

    required_tools: List[str] = ["k3d", "kubectl", "helm"]
    state_dir: str = ".otd"

    @model_validator(mode="after")
    def _default_backend_namespace(self):
        if not self.backend_namespace:
            self.backend_namespace = self.profile.value
        return self
