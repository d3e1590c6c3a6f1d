"""
Binding of one pointing device to one display.

An Assignment is either inactive (its device reports movement, which
raises will_activate) or active (it owns the cursor and its device is
quiet). It never activates itself; the RobotEngine decides.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Optional, Tuple

from .cursor import Cursor
from .displays import Display
from .observer import Observer, noop
from .pointer import PointerDevice, PointerListener

log = logging.getLogger(__name__)


@dataclass
class AssignmentListener:
    will_activate: Callable[[], None] = noop
    disposed: Callable[[], None] = noop


class Assignment(Observer[AssignmentListener]):
    """A device bound to a display, plus its cursor ownership state."""

    def __init__(self, device: PointerDevice, display: Display, cursor: Cursor):
        super().__init__()
        self.device = device
        self.display = display
        self.last_x: Optional[float] = None
        self.last_y: Optional[float] = None
        self.is_active = False
        self._cursor = cursor
        self._disposed = False
        self._cancel_movement = device.register_listener(PointerListener(moved=self._on_moved))

    @property
    def name(self) -> str:
        return self.device.product

    def __repr__(self):
        state = "active" if self.is_active else "inactive"
        return f"Assignment({self.name!r} -> {self.display.label!r}, {state})"

    def _on_moved(self):
        if not self.is_active:
            self.iterate_listeners(lambda listener: listener.will_activate())

    async def connect(self):
        """Ask the device to report movement."""
        await self.device.connect()

    def contains(self, px: Optional[float], py: Optional[float]) -> bool:
        """True if (px, py) is strictly inside this display. Edges are outside."""
        return self.display.bounds.contains(px, py)

    async def deactivate(self):
        """Give up the cursor, remembering where it was."""
        self.is_active = False
        point = self._cursor.position()
        self.last_x = point.x
        self.last_y = point.y
        log.debug(f"Deactivated {self.name} at ({point.x}, {point.y})")
        await self.device.connect()

    def resolve_target(self, previous: Optional["Assignment"] = None) -> Tuple[float, float]:
        """
        Where the cursor should appear when this assignment activates.

        The previous owner's last position wins if it falls on this display,
        then our own last position if it is still on this display, then the
        display center.
        """
        if previous is not None and self.contains(previous.last_x, previous.last_y):
            return previous.last_x, previous.last_y
        if self.contains(self.last_x, self.last_y):
            return self.last_x, self.last_y
        return self.display.bounds.center

    async def activate(self, previous: Optional["Assignment"] = None):
        """Take the cursor and silence the device while we own it."""
        if self.is_active:
            return
        x, y = self.resolve_target(previous)
        self._cursor.move_to(x, y)
        self.is_active = True
        log.info(f"Activated {self.name} on {self.display.label} at ({x}, {y})")
        await self.device.disconnect()

    async def dispose(self):
        """Release the device and notify listeners. Call exactly once."""
        if self._disposed:
            raise RuntimeError(f"{self!r} already disposed")
        self._disposed = True
        self._cancel_movement()
        await self.device.disconnect()
        self.iterate_listeners(lambda listener: listener.disposed())
