"""
Session handoff - the QR code a host shows so scanners can join.

The payload is a small JSON object. A scanner that decodes text parsing as a
handoff payload joins the session instead of recording a scan.
"""

import io
import json
import logging
import time
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlsplit, urlunsplit

import qrcode

from tally.reconcile.codes import normalize_session_code
from tally.reconcile.errors import InvalidInput

logger = logging.getLogger(__name__)

HANDOFF_TYPE = "tally-connect"


@dataclass(frozen=True)
class HandoffPayload:
    session_id: str
    server_url: str = ""
    client_url: str = ""
    timestamp: int = 0

    def to_dict(self) -> dict:
        return {
            "type": HANDOFF_TYPE,
            "sessionId": self.session_id,
            "serverUrl": self.server_url,
            "clientUrl": self.client_url,
            "timestamp": self.timestamp,
        }

    def encode(self) -> str:
        return json.dumps(self.to_dict(), separators=(",", ":"))


def build_payload(session_id: str, server_url: str = "", client_url: str = "",
                  timestamp: Optional[int] = None) -> HandoffPayload:
    return HandoffPayload(
        session_id=normalize_session_code(session_id),
        server_url=server_url,
        client_url=client_url,
        timestamp=timestamp if timestamp is not None else int(time.time() * 1000),
    )


LOOPBACK_HOSTS = {"localhost", "127.0.0.1", "0.0.0.0", "::1"}


def advertised_url(server_url: str, lan_ip: Optional[str]) -> str:
    """
    Server URL as scanners on the network should see it.

    A loopback host is swapped for the LAN address; anything else is kept.
    """
    if not lan_ip or lan_ip in LOOPBACK_HOSTS:
        return server_url
    parts = urlsplit(server_url)
    if parts.hostname not in LOOPBACK_HOSTS:
        return server_url
    netloc = f"{lan_ip}:{parts.port}" if parts.port else lan_ip
    return urlunsplit(parts._replace(netloc=netloc))


def parse_payload(text: str) -> Optional[HandoffPayload]:
    """
    Handoff payload from decoded QR text, or None if the text is an ordinary code.

    JSON that is not a handoff (a GS1 digital link, a product's own QR data)
    is an ordinary code too.
    """
    if not text or not text.lstrip().startswith("{"):
        return None
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        return None
    if not isinstance(data, dict) or data.get("type") != HANDOFF_TYPE:
        return None
    try:
        session_id = normalize_session_code(data.get("sessionId"))
    except InvalidInput:
        logger.warning("Handoff QR carries an invalid session id")
        return None
    return HandoffPayload(
        session_id=session_id,
        server_url=str(data.get("serverUrl") or ""),
        client_url=str(data.get("clientUrl") or ""),
        timestamp=int(data.get("timestamp") or 0),
    )


def render_qr_png(payload: HandoffPayload, box_size: int = 8, border: int = 4) -> bytes:
    """PNG image of the payload's QR code."""
    qr = qrcode.QRCode(version=None, error_correction=qrcode.constants.ERROR_CORRECT_M,
                       box_size=box_size, border=border)
    qr.add_data(payload.encode())
    qr.make(fit=True)
    img = qr.make_image(fill_color="black", back_color="white")

    buffer = io.BytesIO()
    img.save(buffer, format="PNG")
    return buffer.getvalue()


def print_qr(payload: HandoffPayload, out=None) -> None:
    """Draw the QR code in a terminal (for hosts without a display)."""
    qr = qrcode.QRCode(error_correction=qrcode.constants.ERROR_CORRECT_M, border=2)
    qr.add_data(payload.encode())
    qr.make(fit=True)
    qr.print_ascii(out=out, invert=True)
