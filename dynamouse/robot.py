"""
Assignment table and cursor handoff.

States of the handoff guard:
- idle: the next will_activate starts a handoff
- busy: a deactivate/activate pair or a table rebuild is in flight;
  further requests are dropped, the device has to move again to ask for
  the cursor
"""

import asyncio
import logging
from typing import List, Mapping, Optional, Set

from .assignment import Assignment, AssignmentListener
from .config import Config
from .cursor import Cursor
from .displays import DisplayEngine
from .pointer import PointerEngine

log = logging.getLogger(__name__)


class RobotEngine:
    """
    Owns every Assignment and the shared cursor.

    Nothing else moves the cursor or flips Assignment.is_active; both only
    happen inside handoff().
    """

    def __init__(self, pointer_engine: PointerEngine, display_engine: DisplayEngine,
                 cursor: Optional[Cursor] = None):
        self.pointer_engine = pointer_engine
        self.display_engine = display_engine
        self.assignments: List[Assignment] = []
        self._cursor = cursor or Cursor()
        self._busy = False
        self._handoffs: Set[asyncio.Task] = set()
        self._generation = 0

    @property
    def busy(self) -> bool:
        """True while a handoff or a table rebuild is in flight."""
        return self._busy

    @property
    def active_assignment(self) -> Optional[Assignment]:
        for assignment in self.assignments:
            if assignment.is_active:
                return assignment
        return None

    async def setup_assignments(self, config: Config):
        """Rebuild the table from the configured device mapping."""
        await self.apply_mapping(config.device_mapping())

    async def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """
        Wait until no handoff is in flight.

        Returns False if timeout (seconds) expired first. Callers use this
        before apply_mapping; a handoff that never finishes is abandoned by
        the rebuild.
        """
        loop = asyncio.get_running_loop()
        deadline = None if timeout is None else loop.time() + timeout
        while self._handoffs:
            remaining = None if deadline is None else deadline - loop.time()
            if remaining is not None and remaining <= 0:
                return False
            done, _ = await asyncio.wait(set(self._handoffs), timeout=remaining)
            if not done:
                return False
        return True

    async def apply_mapping(self, mapping: Mapping[str, Optional[str]]):
        """
        Replace every Assignment with one per resolvable mapping entry.

        mapping is device product name -> display label. Entries without a
        display, or naming a device or display that isn't present, are
        skipped. Activation requests are dropped while the table is rebuilt,
        and a handoff still running from the previous table is abandoned.
        Must not run concurrently with itself.
        """
        log.debug("Re-initializing assignments")
        self._generation += 1
        self._busy = True
        try:
            for assignment in self.assignments:
                await assignment.dispose()
            self.assignments = []

            for device_name, display_name in mapping.items():
                if not display_name:
                    continue
                device = self.pointer_engine.get_device(device_name)
                display = self.display_engine.get_display(display_name)
                if device is None or display is None:
                    log.debug(f"Skipping {device_name} -> {display_name}: not connected")
                    continue
                assignment = Assignment(device, display, self._cursor)
                self._wire(assignment)
                self.assignments.append(assignment)

            log.info(f"Assignments: {self.assignments}")
            for assignment in self.assignments:
                await assignment.connect()
        finally:
            self._busy = False

    def _wire(self, assignment: Assignment):
        cancel = None

        def disposed():
            cancel()

        cancel = assignment.register_listener(AssignmentListener(
            will_activate=lambda: self.request_activation(assignment),
            disposed=disposed
        ))

    def request_activation(self, assignment: Assignment) -> Optional[asyncio.Task]:
        """
        Start a handoff to assignment unless one is already running.

        Returns the handoff task, or None if the request was dropped.
        """
        if self._busy:
            log.debug(f"Handoff in progress, dropping request from {assignment.name}")
            return None
        self._busy = True
        task = asyncio.ensure_future(self.handoff(assignment, self._generation))
        self._handoffs.add(task)
        task.add_done_callback(self._handoff_done)
        return task

    async def handoff(self, assignment: Assignment, generation: Optional[int] = None):
        """
        Deactivate the current owner, then activate assignment.

        generation is the table the request came from; the handoff is
        abandoned if the table has been rebuilt since.
        """
        if generation is None:
            generation = self._generation
        if generation != self._generation:
            log.debug(f"Assignments rebuilt, dropping request from {assignment.name}")
            return
        self._busy = True
        try:
            log.debug(f"Activating: {assignment.name}")
            previous = self.active_assignment
            if previous is not None and previous is not assignment:
                await previous.deactivate()
            if generation != self._generation:
                log.debug(f"Assignments rebuilt, abandoning handoff to {assignment.name}")
                return
            await assignment.activate(previous)
        finally:
            # A rebuild owns the flag from here on
            if generation == self._generation:
                self._busy = False

    def _handoff_done(self, task: asyncio.Task):
        self._handoffs.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            log.error(f"Handoff failed: {error!r}")

    async def dispose(self):
        """Release every Assignment."""
        await self.apply_mapping({})
