"""
Command Line Interface for OTD.
"""
import logging
import sys
import time

import click

from ..errors import OtdError
from ..MANAGERS.demo_orchestrator import DemoOrchestrator
from ..MANAGERS.kube_manager import KubeManager
from ..MANAGERS.port_report import COMMON_PORTS, inspect_ports
from ..MANAGERS.readiness_waiter import ReadinessTarget, ReadinessWaiter
from ..MODELS.demo_config import BackendProfile
from ..PARSERS.config_parser import ConfigParser
from ..RUNNERS.command_runner import CommandRunner
from ..UTILS.console import print_error, print_status, print_success, print_warning
from ..UTILS.port_finder import allocate

PROFILES = [profile.value for profile in BackendProfile]


@click.group()
@click.option('--config', '-c', 'config_path', default=None, help='YAML file with demo settings')
@click.option('--verbose', '-v', is_flag=True, help='Log every external command')
@click.pass_context
def cli(ctx, config_path, verbose):
    """
    OTD - OpenTelemetry Demo cluster driver.

    Start services of the OpenTelemetry Demo on a local k3d cluster with
    Zipkin or SigNoz as extra tracing backends.
    """
    ctx.ensure_object(dict)
    ctx.obj['config_path'] = config_path
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )


def _load(ctx, **overrides):
    return ConfigParser().parse(ctx.obj.get('config_path'), **overrides)


def _fail(error: OtdError):
    print_error(str(error))
    sys.exit(1)


@cli.command()
@click.option('--profile', '-p', type=click.Choice(PROFILES), default=None, help='Backend profile')
@click.option('--port', type=int, default=None, help='Preferred host port for the demo')
@click.option('--detach', '-d', is_flag=True, help='Leave port forwards running in background')
@click.pass_context
def up(ctx, profile, port, detach):
    """Start the cluster, backends and demo."""
    try:
        config = _load(ctx, profile=profile, default_port=port)
        orchestrator = DemoOrchestrator(config)
        click.echo("Starting OpenTelemetry Demo deployment...")
        session = orchestrator.up()
    except OtdError as e:
        _fail(e)

    _display_access_info(orchestrator, session)

    if not detach:
        click.echo("Running... Press Ctrl+C to stop port forwarding.")
        try:
            while "running" in orchestrator.jobs.status().values():
                time.sleep(1)
            print_warning("All port forwards exited")
        except KeyboardInterrupt:
            click.echo("\nStopping port forwarding...")
        orchestrator.stop_port_forwarding()


def _display_access_info(orchestrator, session):
    config = orchestrator.config
    click.echo("")
    click.echo("Deployment completed successfully!")
    click.echo("")
    click.echo("Access Points:")
    click.echo("=" * 34)
    for label, url in orchestrator.access_links(session):
        click.echo(f"{label + ':':24}{url}")
    click.echo("")
    click.echo("Useful Commands:")
    click.echo("=" * 34)
    click.echo(f"{'View all pods:':24}kubectl get pods --all-namespaces")
    click.echo(f"{'View demo services:':24}kubectl get svc -n {config.demo_namespace}")
    click.echo(f"{'View backend services:':24}kubectl get svc -n {config.backend_namespace}")
    click.echo(f"{'Stop demo:':24}otd down")
    click.echo("")
    print_success("Ready for your presentation!")


@cli.command()
@click.option('--profile', '-p', type=click.Choice(PROFILES), default=None, help='Backend profile')
@click.option('--releases/--no-releases', default=None,
              help='Uninstall Helm releases and namespaces before deleting the cluster')
@click.pass_context
def down(ctx, profile, releases):
    """Stop port forwards and delete the cluster."""
    try:
        config = _load(ctx, profile=profile)
        click.echo("Starting OpenTelemetry Demo cleanup...")
        DemoOrchestrator(config).down(releases=releases)
    except OtdError as e:
        _fail(e)
    click.echo("")
    click.echo("Cleanup completed successfully!")


@cli.command()
@click.pass_context
def status(ctx):
    """Show the saved session and its port forwards."""
    try:
        info = DemoOrchestrator(_load(ctx)).status()
    except OtdError as e:
        _fail(e)

    state = "running" if info['cluster_exists'] else "absent"
    click.echo(f"{'CLUSTER':15} {info['cluster']} ({state})")
    session = info['session']
    if session is None:
        click.echo("No session recorded.")
        if info['legacy_port'] is not None:
            click.echo(f"{'LEGACY PORT':15} {info['legacy_port']} (from .demo-port)")
        return
    click.echo(f"{'PROFILE':15} {session.profile}")
    click.echo(f"{'PORT':15} {session.port}")
    click.echo(f"{'STARTED':15} {session.created_at}")
    click.echo("")
    click.echo(f"{'JOB':15} {'PORT':6} {'STATUS':10}")
    click.echo("-" * 33)
    for job in session.jobs:
        click.echo(f"{job.name:15} {str(job.local_port or ''):6} {info['jobs'][job.name]:10}")


@cli.command()
@click.argument('ports', nargs=-1, type=int)
def ports(ports):
    """Check which demo ports are in use."""
    targets = {port: COMMON_PORTS.get(port, "") for port in ports} if ports else COMMON_PORTS
    for usage in inspect_ports(targets):
        label = f" ({usage.label})" if usage.label else ""
        if usage.in_use:
            owners = ", ".join(usage.owners) if usage.owners else "unknown process"
            click.echo(f"Port {usage.port}{label}: in use by {owners}")
        else:
            click.echo(f"Port {usage.port}{label}: available")


@cli.command('allocate-port')
@click.option('--preferred', type=int, default=None, help='First port to try')
@click.option('--window', type=int, default=None, help='How many ports past the preferred one to scan')
@click.pass_context
def allocate_port(ctx, preferred, window):
    """Print the first free port at or after the preferred one."""
    try:
        config = _load(ctx, default_port=preferred, port_window=window)
        click.echo(allocate(config.default_port, config.port_window))
    except OtdError as e:
        _fail(e)


@cli.command()
@click.argument('namespace')
@click.argument('name')
@click.option('--kind', default='deployment', help='Resource kind')
@click.option('--timeout', type=float, default=None, help='Seconds to wait')
@click.option('--interval', type=float, default=None, help='Seconds between polls')
@click.pass_context
def wait(ctx, namespace, name, kind, timeout, interval):
    """Wait for a resource to become ready."""
    try:
        config = _load(ctx, readiness_timeout=timeout, poll_interval=interval)
        target = ReadinessTarget(namespace, name, kind)
        waiter = ReadinessWaiter(KubeManager(CommandRunner()).is_ready, config.poll_interval)
        print_status(f"Waiting for {target}...")
        waiter.wait_ready(target, config.readiness_timeout)
    except OtdError as e:
        _fail(e)
    print_success(f"{target} is ready")


def main():
    """
    Main entry point for the CLI.
    """
    cli(obj={})


if __name__ == '__main__':
    main()
