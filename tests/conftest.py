"""
Shared fixtures: in-memory stand-ins for devices, displays and the cursor.
"""

import asyncio
from typing import Dict, List, Optional

import pytest

from dynamouse.cursor import Cursor
from dynamouse.displays import Bounds, Display
from dynamouse.observer import Observer
from dynamouse.pointer import PointerListener


class FakeController:
    """Mimics pynput.mouse.Controller's position attribute."""

    def __init__(self, x=0, y=0):
        self.position = (x, y)
        self.moves = []

    def __setattr__(self, name, value):
        if name == 'position' and hasattr(self, 'moves'):
            self.moves.append(value)
        super().__setattr__(name, value)


class FakeDevice(Observer[PointerListener]):
    """A PointerDevice whose connection state and movement are scripted."""

    def __init__(self, product: str):
        super().__init__()
        self.product = product
        self.connected = False
        self.calls: List[str] = []

    async def connect(self):
        self.calls.append('connect')
        self.connected = True

    async def disconnect(self):
        self.calls.append('disconnect')
        self.connected = False

    def move(self):
        self.iterate_listeners(lambda listener: listener.moved())


class GatedDevice(FakeDevice):
    """The next connect or disconnect blocks until its gate is set."""

    def __init__(self, product: str):
        super().__init__(product)
        self._gates: Dict[str, asyncio.Event] = {}

    def hold(self, call: str) -> asyncio.Event:
        gate = asyncio.Event()
        self._gates[call] = gate
        return gate

    async def _wait_gate(self, call: str):
        gate = self._gates.pop(call, None)
        if gate is not None:
            await gate.wait()

    async def connect(self):
        await self._wait_gate('connect')
        await super().connect()

    async def disconnect(self):
        await self._wait_gate('disconnect')
        await super().disconnect()


class FakePointerEngine:
    def __init__(self, *devices: FakeDevice):
        self.devices: Dict[str, FakeDevice] = {d.product: d for d in devices}

    def get_device(self, name: str) -> Optional[FakeDevice]:
        return self.devices.get(name)


class FakeDisplayEngine:
    def __init__(self, *displays: Display):
        self.displays = list(displays)

    def get_display(self, name: Optional[str]) -> Optional[Display]:
        for display in self.displays:
            if display.label == name:
                return display
        return None


@pytest.fixture
def controller():
    return FakeController(10, 10)


@pytest.fixture
def cursor(controller):
    return Cursor(controller)


@pytest.fixture
def left_display():
    return Display('LEFT', Bounds(0, 0, 100, 100))


@pytest.fixture
def right_display():
    # Overlaps the left display's interior around (50, 50)
    return Display('RIGHT', Bounds(40, 0, 200, 100))


@pytest.fixture
def far_display():
    return Display('FAR', Bounds(1000, 0, 400, 300))
