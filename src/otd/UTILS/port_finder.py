"""
Utilities for finding and checking availability of network ports.
"""
import logging
import socket
from typing import Callable, Optional, Set

import psutil

from ..errors import NoPortAvailable

logger = logging.getLogger(__name__)

DEFAULT_WINDOW = 100
MAX_PORT = 65535


def get_free_port() -> int:
    """
    Finds a free port on localhost.
    """
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(('', 0))
        return s.getsockname()[1]


def listening_ports() -> Optional[Set[int]]:
    """
    Returns every local port with a TCP socket in LISTEN state.

    :return: The set of ports, or None when the platform refuses to enumerate
             sockets owned by other users.
    """
    try:
        connections = psutil.net_connections(kind="tcp")
    except psutil.AccessDenied:
        return None
    return {
        conn.laddr.port
        for conn in connections
        if conn.status == psutil.CONN_LISTEN and conn.laddr
    }


def _accepts_connections(port: int, host: str = "127.0.0.1") -> bool:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.settimeout(0.5)
        return s.connect_ex((host, port)) == 0


def is_port_in_use(port: int) -> bool:
    """
    Checks if any process is listening on a TCP port.
    """
    ports = listening_ports()
    if ports is None:
        return _accepts_connections(port)
    return port in ports


def is_port_free(port: int) -> bool:
    """
    Checks if a port is free on localhost.
    """
    return not is_port_in_use(port)


def allocate(preferred: int,
             window: int = DEFAULT_WINDOW,
             in_use: Callable[[int], bool] = is_port_in_use) -> int:
    """
    Finds the first free port in [preferred, preferred + window], never
    scanning past MAX_PORT.

    The probe is read-only; nothing is bound, so the caller must use the port
    before somebody else does.

    :param preferred: First port to try.
    :param window: How many ports past the preferred one to scan.
    :param in_use: Predicate telling whether a port is taken.
    :return: The first port nobody listens on.
    :raises NoPortAvailable: If every port in the window is taken.
    """
    last = min(preferred + window, MAX_PORT)
    for port in range(preferred, last + 1):
        if not in_use(port):
            if port != preferred:
                logger.debug("Port %d is in use, picked %d", preferred, port)
            return port
    raise NoPortAvailable(preferred, max(last - preferred, 0))
