"""
Scan surface - owns a capture device while scanning is active.

Decoding itself is external: a device yields decoded text (a camera pipeline,
or a keyboard-wedge barcode reader that types each code followed by Enter).
The surface hands each decode to a callback, suppresses the burst of repeats a
reader produces while a code stays in view, and guarantees the device is
released on every exit path.

Usage:
    with ScanSurface(LineReaderDevice("/dev/ttyACM0"), participant.scan) as surface:
        surface.run()
"""

import errno
import logging
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Callable, Optional, TextIO

from tally.reconcile.errors import CapabilityUnavailable

logger = logging.getLogger(__name__)

DEFAULT_COOLDOWN_SECONDS = 1.0


class CaptureDevice(ABC):
    """Abstract source of decoded scan text."""

    @abstractmethod
    def open(self) -> None:
        """
        Acquire the device.

        Raises:
            CapabilityUnavailable: device missing, busy or not permitted
        """
        pass

    @abstractmethod
    def read(self) -> Optional[str]:
        """Next decoded text; None when the device has nothing more to give."""
        pass

    @abstractmethod
    def close(self) -> None:
        """Release the device. Safe to call more than once."""
        pass


class LineReaderDevice(CaptureDevice):
    """
    Keyboard-wedge or serial barcode reader: one decoded code per line.

    Args:
        source: Path to the device node/file, or an already-open text stream
    """

    def __init__(self, source: str | Path | TextIO):
        self._source = source
        self._stream: Optional[TextIO] = None
        self._owns_stream = False

    def open(self) -> None:
        if hasattr(self._source, "readline"):
            self._stream = self._source
            return
        path = Path(self._source)
        try:
            self._stream = open(path, "r", encoding="utf-8", errors="replace")
        except FileNotFoundError:
            raise CapabilityUnavailable("no-camera", f"No scanner at {path}")
        except PermissionError:
            raise CapabilityUnavailable("permission-denied", f"No permission to read {path}")
        except OSError as e:
            if e.errno == errno.EBUSY:
                raise CapabilityUnavailable("device-busy", f"{path} is in use")
            raise CapabilityUnavailable("unsupported", f"Cannot open {path}: {e}")
        self._owns_stream = True

    def read(self) -> Optional[str]:
        if self._stream is None:
            return None
        line = self._stream.readline()
        if not line:
            return None
        return line.rstrip("\r\n")

    def close(self) -> None:
        if self._stream is not None and self._owns_stream:
            self._stream.close()
        self._stream = None
        self._owns_stream = False


class ScanSurface:
    """
    Active scanning session on one device.

    Args:
        device: Capture device to own while active
        on_decode: Called with each accepted decode (e.g. Participant.scan)
        cooldown_seconds: Repeats of the same text inside this window are dropped
        clock: Monotonic clock (injectable for tests)
    """

    def __init__(self, device: CaptureDevice, on_decode: Callable[[str], object],
                 cooldown_seconds: float = DEFAULT_COOLDOWN_SECONDS,
                 clock: Callable[[], float] = time.monotonic):
        self.device = device
        self.on_decode = on_decode
        self.cooldown_seconds = cooldown_seconds
        self.clock = clock
        self.active = False
        self._last_text: Optional[str] = None
        self._last_at = 0.0

    def start(self) -> None:
        if self.active:
            return
        try:
            self.device.open()
        except CapabilityUnavailable as e:
            logger.error(f"Capture unavailable ({e.reason}): {e.detail}")
            raise
        self.active = True
        logger.info("Scan surface started")

    def stop(self) -> None:
        """Release the device. Idempotent."""
        was_active = self.active
        self.active = False
        try:
            self.device.close()
        finally:
            if was_active:
                logger.info("Scan surface stopped")

    def __enter__(self) -> "ScanSurface":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()

    def _is_repeat(self, text: str) -> bool:
        now = self.clock()
        repeat = text == self._last_text and (now - self._last_at) < self.cooldown_seconds
        self._last_text = text
        self._last_at = now
        return repeat

    def read_once(self) -> Optional[str]:
        """
        Pull one decode and dispatch it.

        Returns:
            The dispatched text, "" for a suppressed or blank read, None when
            the device is exhausted
        """
        if not self.active:
            return None
        text = self.device.read()
        if text is None:
            return None
        if not text.strip() or self._is_repeat(text):
            return ""
        self.on_decode(text)
        return text

    def run(self) -> int:
        """Dispatch decodes until the device is exhausted or stopped. Returns count."""
        dispatched = 0
        try:
            while self.active:
                text = self.read_once()
                if text is None:
                    break
                if text:
                    dispatched += 1
        finally:
            self.stop()
        return dispatched
