"""
Display enumeration.

Uses screeninfo to list monitors and their global geometry. Monitors are
re-enumerated periodically since screeninfo has no hotplug notifications.
"""

import asyncio
import logging
import threading
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

from screeninfo import get_monitors
from screeninfo.common import ScreenInfoError

from .observer import Observer, noop

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class Bounds:
    """A display rectangle in global screen coordinates."""
    x: float
    y: float
    width: float
    height: float

    def contains(self, px: Optional[float], py: Optional[float]) -> bool:
        """
        True if the point lies strictly inside the rectangle.

        Points on any edge are outside.
        """
        if px is None or py is None:
            return False
        inside_horizontal = self.x < px < self.x + self.width
        inside_vertical = self.y < py < self.y + self.height
        return inside_horizontal and inside_vertical

    @property
    def center(self) -> Tuple[float, float]:
        return self.x + self.width / 2, self.y + self.height / 2


@dataclass(frozen=True)
class Display:
    """A monitor, identified by its label."""
    label: str
    bounds: Bounds

    @classmethod
    def from_screeninfo(cls, monitor, index: int = 0) -> "Display":
        return cls(
            label=getattr(monitor, 'name', None) or f"Display {index + 1}",
            bounds=Bounds(monitor.x, monitor.y, monitor.width, monitor.height),
        )


@dataclass
class DisplayListener:
    displays_changed: Callable[[List[Display]], None] = noop


def list_displays() -> List[Display]:
    """Enumerate connected monitors."""
    try:
        monitors = get_monitors()
    except ScreenInfoError as e:
        log.warning(f"Could not enumerate displays: {e}")
        return []
    return [Display.from_screeninfo(m, idx) for idx, m in enumerate(monitors)]


class DisplayEngine(Observer[DisplayListener]):
    """
    Keeps the current list of displays and reports changes.

    Notifications are delivered on the event loop passed to init().
    """

    def __init__(self, enumerate_displays: Callable[[], List[Display]] = list_displays,
                 poll_interval: float = 2.0):
        super().__init__()
        self.displays: List[Display] = []
        self._enumerate = enumerate_displays
        self._poll_interval = poll_interval
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def recompute(self):
        """Re-enumerate displays and notify listeners."""
        self.displays = self._enumerate()
        log.info(f"Displays: {[d.label for d in self.displays]}")
        displays = list(self.displays)
        self.iterate_listeners(lambda listener: listener.displays_changed(displays))

    def init(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        """Enumerate now and start watching for display changes."""
        self._loop = loop
        self.recompute()
        if loop is None or self._thread is not None:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._monitor_loop, daemon=True)
        self._thread.start()

    def stop(self):
        """Stop watching for display changes."""
        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout=1.0)
            self._thread = None

    def _monitor_loop(self):
        """Poll for display geometry changes."""
        while not self._stop_event.wait(self._poll_interval):
            try:
                current = self._enumerate()
            except Exception as e:
                log.warning(f"Display poll failed: {e}")
                continue
            if current != self.displays:
                log.info("Display configuration changed")
                self._loop.call_soon_threadsafe(self.recompute)

    def get_display(self, name: Optional[str]) -> Optional[Display]:
        """Find a display by label."""
        if name is None:
            return None
        for display in self.displays:
            if display.label == name:
                return display
        return None
