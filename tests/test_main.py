"""
Tests for the daemon's startup and reconfiguration sequencing.
"""

import asyncio
from unittest.mock import MagicMock, patch

import pytest

try:
    from dynamouse import main as app_main
except Exception as e:  # pystray picks a tray backend at import time
    pytest.skip(f"tray backend unavailable: {e}", allow_module_level=True)

from dynamouse.config import ConfigEngine, DeviceSettings
from dynamouse.cursor import Cursor
from dynamouse.displays import Bounds, Display, DisplayEngine
from dynamouse.pointer import HIDDeviceInfo, PointerEngine
from dynamouse.robot import RobotEngine

from conftest import FakeController, FakeDisplayEngine, FakePointerEngine, GatedDevice


@pytest.fixture
def app(tmp_path):
    app = app_main.DynaMouse()
    app._loop.close()
    app.config_engine = ConfigEngine(tmp_path / 'config.yaml')
    return app


def mouse_info(product='Mouse A'):
    return HIDDeviceInfo(
        path=b'/dev/hidraw0', vid=0x046D, pid=0xC077, product=product, manufacturer='Acme',
        serial='', usage_page=0x01, usage=0x02
    )


@pytest.mark.asyncio
async def test_startup_builds_assignments_once(app):
    app._loop = asyncio.get_running_loop()
    app.pointer_engine = PointerEngine(enumerate_devices=lambda: [mouse_info()])
    app.display_engine = DisplayEngine(
        enumerate_displays=lambda: [Display('LEFT', Bounds(0, 0, 100, 100))]
    )
    app._setup_movement = MagicMock()

    with patch.object(app_main, 'Cursor', lambda: Cursor(FakeController())):
        app._init()

    try:
        assert app._setup_movement.call_count == 1
        assert [d.product for d in app.pointer_engine.get_devices()] == ['Mouse A']
        assert [d.label for d in app.display_engine.displays] == ['LEFT']
    finally:
        for cancel in app._cancel_listeners:
            cancel()
        app.display_engine.stop()
        await app.pointer_engine.dispose()


class TestReconfigure:
    @pytest.fixture
    def gated(self):
        return GatedDevice('Mouse A')

    @pytest.fixture
    def wired_app(self, app, gated, left_display, cursor):
        app.robot = RobotEngine(FakePointerEngine(gated), FakeDisplayEngine(left_display), cursor)
        app.config_engine.config.devices['Mouse A'] = DeviceSettings(display='LEFT')
        return app

    @pytest.mark.asyncio
    async def test_waits_for_handoff_before_rebuilding(self, wired_app, gated):
        app = wired_app
        app._reconfigure_lock = asyncio.Lock()
        await app.robot.setup_assignments(app.config_engine.config)
        old = list(app.robot.assignments)
        gate = gated.hold('disconnect')
        gated.move()
        await asyncio.sleep(0)

        reconfigure = asyncio.ensure_future(app._reconfigure())
        for _ in range(3):
            await asyncio.sleep(0)

        assert not reconfigure.done()
        assert app.robot.assignments == old

        gate.set()
        await reconfigure

        assert len(app.robot.assignments) == 1
        assert app.robot.assignments[0] is not old[0]
        assert gated.connected
        assert not app.robot.busy

    @pytest.mark.asyncio
    async def test_stuck_handoff_is_abandoned_after_timeout(self, wired_app, gated, caplog):
        app = wired_app
        app._reconfigure_lock = asyncio.Lock()
        await app.robot.setup_assignments(app.config_engine.config)
        gate = gated.hold('disconnect')
        gated.move()
        await asyncio.sleep(0)

        with patch.object(app_main, 'HANDOFF_WAIT', 0.01):
            await app._reconfigure()

        try:
            assert 'rebuilding anyway' in caplog.text
            assert not app.robot.busy
            assert gated.connected
        finally:
            gate.set()
            await app.robot.wait_idle()
