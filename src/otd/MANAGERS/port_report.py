"""
Report which of the demo's well-known ports are taken, and by whom.
"""
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import psutil

from ..UTILS.port_finder import is_port_in_use

COMMON_PORTS: Dict[int, str] = {
    8080: "Demo Store/K3d LoadBalancer",
    3301: "SigNoz",
    4317: "OTLP gRPC",
    4318: "OTLP HTTP",
    9411: "Zipkin",
}


@dataclass
class PortUsage:
    port: int
    label: str
    in_use: bool
    owners: List[str] = field(default_factory=list)


def _listeners() -> Optional[Dict[int, List[Optional[int]]]]:
    try:
        connections = psutil.net_connections(kind="tcp")
    except psutil.AccessDenied:
        return None
    listeners: Dict[int, List[Optional[int]]] = {}
    for conn in connections:
        if conn.status == psutil.CONN_LISTEN and conn.laddr:
            listeners.setdefault(conn.laddr.port, []).append(conn.pid)
    return listeners


def _describe(pid: Optional[int]) -> str:
    if pid is None:
        return "unknown process"
    try:
        return f"{psutil.Process(pid).name()} (pid {pid})"
    except (psutil.NoSuchProcess, psutil.AccessDenied):
        return f"pid {pid}"


def inspect_ports(ports: Optional[Dict[int, str]] = None) -> List[PortUsage]:
    """
    Checks each port and names the listening processes where the platform allows it.

    :param ports: Port to label mapping; COMMON_PORTS by default.
    """
    ports = COMMON_PORTS if ports is None else ports
    listeners = _listeners()
    report = []
    for port, label in ports.items():
        if listeners is None:
            report.append(PortUsage(port, label, is_port_in_use(port)))
            continue
        pids = listeners.get(port)
        owners = sorted({_describe(pid) for pid in pids}) if pids else []
        report.append(PortUsage(port, label, bool(pids), owners))
    return report
