"""
LAN address discovery.

Scanners are phones on the same network as the server, so the handoff QR
needs an address they can reach rather than "localhost".
"""
import logging
import socket

logger = logging.getLogger(__name__)


def local_ip() -> str:
    """
    Best-guess IPv4 address of this machine on the local network.

    Connecting a UDP socket sends nothing; it only selects the outbound
    interface. Falls back to the hostname's addresses, then "localhost".
    """
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
            sock.connect(("8.8.8.8", 80))
            ip = sock.getsockname()[0]
        if ip and not ip.startswith("127.") and ip != "0.0.0.0":
            return ip
    except OSError as e:
        logger.debug(f"No default route for LAN address lookup: {e}")

    try:
        for candidate in socket.gethostbyname_ex(socket.gethostname())[2]:
            if candidate and not candidate.startswith("127."):
                return candidate
    except OSError as e:
        logger.debug(f"Hostname lookup failed: {e}")

    logger.warning("No LAN address found, advertising localhost")
    return "localhost"
