"""
Shared system cursor.

Uses pynput's mouse controller for reading and warping the global pointer.
Only the RobotEngine owns a Cursor; Assignments borrow it for the duration
of a mapping generation.
"""

import logging
from dataclasses import dataclass

try:
    from pynput import mouse
    PYNPUT_AVAILABLE = True
except ImportError:
    PYNPUT_AVAILABLE = False

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class Point:
    """A global screen coordinate."""
    x: float
    y: float


class Cursor:
    """Moves and reads the single global cursor."""

    def __init__(self, controller=None):
        if controller is None:
            if not PYNPUT_AVAILABLE:
                raise RuntimeError("pynput is not available, cannot control the cursor")
            controller = mouse.Controller()
        self._controller = controller

    def move_to(self, x: float, y: float):
        """Warp the cursor to the pixel nearest (x, y)."""
        log.debug(f"Moving cursor to ({x}, {y})")
        self._controller.position = (round(x), round(y))

    def position(self) -> Point:
        """Current global cursor position."""
        x, y = self._controller.position
        return Point(x, y)
