"""
End-to-end bring-up and teardown against a fake k3d/kubectl/helm.
"""
import json

import pytest

from otd.errors import CommandError, ConfigError, MissingPrerequisites, ReadinessTimeout
from otd.MANAGERS.demo_orchestrator import DemoOrchestrator
from otd.MODELS.demo_config import DemoConfig
from otd.MODELS.deployment_plan import SIGNOZ_REPO_URL


def make_orchestrator(tmp_path, cluster, registry_cls, runner=None, **settings):
    settings.setdefault("forward_settle_timeout", 0)
    settings.setdefault("poll_interval", 0.01)
    config = DemoConfig(**settings)
    runner = runner or cluster.runner()
    orchestrator = DemoOrchestrator(
        config,
        runner=runner,
        base_dir=str(tmp_path),
        port_in_use=cluster.in_use,
        sleep=lambda seconds: None,
    )
    orchestrator.jobs = registry_cls(orchestrator.store, cluster)
    return orchestrator


class TestZipkinProfile:

    def test_up(self, tmp_path, fake_cluster, make_registry):
        orchestrator = make_orchestrator(tmp_path, fake_cluster, make_registry)
        runner = orchestrator.runner
        try:
            session = orchestrator.up()

            # 8080 was taken, so the ingress moves to 8081 and the frontend forward to 8082
            assert session.port == 8081
            create = runner.called("k3d", "cluster", "create")[0]
            assert "8081:80@loadbalancer" in create
            assert {job.name: job.local_port for job in session.jobs} == {"demo": 8082, "zipkin": 9411}

            requested = orchestrator.jobs.requested
            assert requested["demo"] == [
                "kubectl", "port-forward", "svc/frontend-proxy", "8082:8080", "-n", "otel-demo",
            ]
            assert requested["zipkin"][-3:] == ["9411:9411", "-n", "zipkin"]

            applied = [text for call, text in zip(runner.calls, runner.inputs) if call[:2] == ["kubectl", "apply"]]
            assert any("namespace: zipkin" in text and "kind: Deployment" in text for text in applied)

            patch = json.loads(runner.called("kubectl", "patch")[0][-1])
            relay = patch["data"]["relay"]
            assert "zipkin.zipkin.svc.cluster.local:9411" in relay
            assert "${env:MY_POD_IP}" in relay
            assert runner.called("kubectl", "rollout", "restart")

            waited = [call[3] for call in runner.called("kubectl", "get", "deployment")]
            assert waited == ["zipkin", "frontend", "frontend-proxy"]

            assert orchestrator.store.load().port == 8081
            links = dict(orchestrator.access_links())
            assert links["Jaeger (Backend #1)"] == "http://localhost:8082/jaeger/ui/"
            assert links["Zipkin (Backend #2)"] == "http://localhost:9411"
        finally:
            orchestrator.jobs.stop_all()

    def test_step_order(self, tmp_path, fake_cluster, make_registry):
        orchestrator = make_orchestrator(tmp_path, fake_cluster, make_registry)
        try:
            orchestrator.up()
        finally:
            orchestrator.jobs.stop_all()
        firsts = [tuple(call[:2]) for call in orchestrator.runner.calls]
        order = [("k3d", "cluster"), ("helm", "repo"), ("kubectl", "create"), ("helm", "upgrade"), ("kubectl", "patch")]
        positions = [firsts.index(step) for step in order]
        assert positions == sorted(positions)

    def test_existing_cluster_is_recreated(self, tmp_path, fake_cluster, make_registry):
        fake_cluster.clusters.add("otel-demo")
        orchestrator = make_orchestrator(tmp_path, fake_cluster, make_registry)
        try:
            orchestrator.up()
        finally:
            orchestrator.jobs.stop_all()
        assert orchestrator.runner.called("k3d", "cluster", "delete", "otel-demo")
        assert "otel-demo" in fake_cluster.clusters

    def test_missing_tools_abort_before_any_command(self, tmp_path, fake_cluster, make_registry):
        orchestrator = make_orchestrator(tmp_path, fake_cluster, make_registry)
        orchestrator.runner.missing = {"k3d", "helm"}
        with pytest.raises(MissingPrerequisites) as exc:
            orchestrator.up()
        assert exc.value.tools == ["k3d", "helm"]
        assert orchestrator.runner.calls == []

    def test_readiness_timeout_aborts(self, tmp_path, fake_cluster, make_registry):
        not_ready = json.dumps({"status": {"conditions": [{"type": "Available", "status": "False"}]}})
        runner = fake_cluster.runner()
        runner.responses[("kubectl", "get", "deployment")] = not_ready
        orchestrator = make_orchestrator(tmp_path, fake_cluster, make_registry, runner=runner,
                                         readiness_timeout=0.05)
        with pytest.raises(ReadinessTimeout) as exc:
            orchestrator.up()
        assert "deployment/zipkin in namespace zipkin" in str(exc.value)
        assert not runner.called("helm", "upgrade")
        # Nothing is rolled back
        assert not runner.called("k3d", "cluster", "delete")
        assert "otel-demo" in fake_cluster.clusters

    def test_command_failure_is_fatal(self, tmp_path, fake_cluster, make_registry):
        runner = fake_cluster.runner()
        runner.responses[("helm", "repo", "add")] = CommandError(["helm", "repo", "add"], 1, "offline")
        orchestrator = make_orchestrator(tmp_path, fake_cluster, make_registry, runner=runner)
        with pytest.raises(CommandError):
            orchestrator.up()
        assert len(runner.called("helm", "repo", "add")) == 1
        assert not runner.called("kubectl", "apply")


class TestDown:

    def test_down_twice(self, tmp_path, fake_cluster, make_registry):
        orchestrator = make_orchestrator(tmp_path, fake_cluster, make_registry)
        orchestrator.up()
        handles = list(orchestrator.jobs.jobs.values())
        assert all(handle.is_running() for handle in handles)

        # A separate invocation tears down what the first one recorded
        cleaner = make_orchestrator(tmp_path, fake_cluster, make_registry)
        cleaner.down()
        assert not any(handle.is_running() for handle in handles)
        assert fake_cluster.clusters == set()
        assert not cleaner.store.exists()
        assert not (tmp_path / ".otd" / "logs").exists()

        cleaner.down()
        assert fake_cluster.clusters == set()
        assert len(cleaner.runner.called("k3d", "cluster", "delete")) == 1
        orchestrator.jobs.stop_all()

    def test_down_without_anything(self, tmp_path, fake_cluster, make_registry):
        orchestrator = make_orchestrator(tmp_path, fake_cluster, make_registry)
        orchestrator.down()
        orchestrator.down()
        assert not orchestrator.runner.called("k3d", "cluster", "delete")

    def test_down_when_k3d_fails(self, tmp_path, fake_cluster, make_registry):
        runner = fake_cluster.runner()
        runner.responses[("k3d", "cluster", "list")] = CommandError(["k3d"], 127, "not found")
        orchestrator = make_orchestrator(tmp_path, fake_cluster, make_registry, runner=runner)
        orchestrator.down()
        assert not runner.called("k3d", "cluster", "delete")

    def test_down_removes_legacy_markers(self, tmp_path, fake_cluster, make_registry):
        (tmp_path / ".demo-port").write_text("8080")
        (tmp_path / ".zipkin-pf.pid").write_text("999999")
        orchestrator = make_orchestrator(tmp_path, fake_cluster, make_registry)
        orchestrator.down()
        assert not (tmp_path / ".demo-port").exists()
        assert not (tmp_path / ".zipkin-pf.pid").exists()

    @pytest.mark.parametrize("content", ["-1", "0"])
    def test_down_with_invalid_pid_marker(self, tmp_path, fake_cluster, make_registry, content):
        fake_cluster.clusters.add("otel-demo")
        (tmp_path / ".demo-pf.pid").write_text(content)
        orchestrator = make_orchestrator(tmp_path, fake_cluster, make_registry)
        orchestrator.down()
        assert fake_cluster.clusters == set()
        assert not (tmp_path / ".demo-pf.pid").exists()

        orchestrator.down()

    def test_down_with_corrupt_session(self, tmp_path, fake_cluster, make_registry):
        state = tmp_path / ".otd"
        state.mkdir()
        (state / "session.json").write_text("nonsense")
        orchestrator = make_orchestrator(tmp_path, fake_cluster, make_registry)
        orchestrator.down()
        assert not (state / "session.json").exists()


class TestSignozProfile:

    def test_missing_values_file(self, tmp_path, fake_cluster, make_registry):
        orchestrator = make_orchestrator(tmp_path, fake_cluster, make_registry,
                                         profile="signoz", backend_values_files=["signoz-values.yaml"])
        with pytest.raises(ConfigError):
            orchestrator.up()
        assert orchestrator.runner.calls == []

    def test_up_and_down(self, tmp_path, fake_cluster, make_registry):
        (tmp_path / "signoz-values.yaml").write_text("{}\n")
        orchestrator = make_orchestrator(tmp_path, fake_cluster, make_registry,
                                         profile="signoz", backend_values_files=["signoz-values.yaml"])
        try:
            session = orchestrator.up()
        finally:
            orchestrator.jobs.stop_all()
        runner = orchestrator.runner

        installs = [call[3] for call in runner.called("helm", "upgrade", "--install")]
        assert installs == ["signoz", "otel-demo"]
        assert "--values" in runner.called("helm", "upgrade", "--install", "signoz")[0]
        assert not runner.called("kubectl", "patch")
        assert {job.name: job.local_port for job in session.jobs} == {"demo": 8082, "signoz": 3301}
        assert any(SIGNOZ_REPO_URL in call for call in runner.called("helm", "repo", "add"))

        orchestrator.down()
        assert len(runner.called("helm", "uninstall")) == 2
        assert fake_cluster.releases == {"otel-demo": set(), "signoz": set()}
        deleted = [call[3] for call in runner.called("kubectl", "delete", "namespace")]
        assert deleted == ["otel-demo", "signoz"]

        orchestrator.down()
        assert len(runner.called("helm", "uninstall")) == 2


def test_status(tmp_path, fake_cluster, make_registry):
    orchestrator = make_orchestrator(tmp_path, fake_cluster, make_registry)
    assert orchestrator.status()["session"] is None
    try:
        orchestrator.up()
        info = orchestrator.status()
        assert info["cluster_exists"]
        assert info["jobs"] == {"demo": "running", "zipkin": "running"}
    finally:
        orchestrator.jobs.stop_all()
