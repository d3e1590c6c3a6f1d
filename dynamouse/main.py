"""
DynaMouse - Main entry point and system tray daemon.
"""

import os
import sys
import asyncio
import logging
import threading
from typing import Callable, List, Optional

# Handle imports for when pystray/PIL aren't available
try:
    import pystray
    from PIL import Image, ImageDraw
    TRAY_AVAILABLE = True
except ImportError:
    TRAY_AVAILABLE = False

from .config import ConfigEngine, ConfigListener, STARTUP_DELAYS, get_config_dir, get_config_path
from .cursor import Cursor
from .displays import DisplayEngine, DisplayListener
from .pointer import PointerEngine, PointerEngineListener, HID_AVAILABLE
from .robot import RobotEngine

LOG_FORMAT = '%(asctime)s.%(msecs)03d [%(levelname)s] %(name)s: %(message)s'
LOG_DATEFMT = '%H:%M:%S'

# Seconds a reconfiguration waits for an in-flight handoff
HANDOFF_WAIT = 5.0

log = logging.getLogger(__name__)


class DynaMouse:
    """Main application controller."""

    def __init__(self):
        self.config_engine = ConfigEngine()
        self.display_engine = DisplayEngine()
        self.pointer_engine = PointerEngine()
        self.robot: Optional[RobotEngine] = None
        self.tray: Optional['pystray.Icon'] = None
        self._loop = asyncio.new_event_loop()
        self._loop_thread: Optional[threading.Thread] = None
        self._reconfigure_lock: Optional[asyncio.Lock] = None
        self._cancel_listeners: List[Callable[[], None]] = []
        self._file_handler: Optional[logging.Handler] = None
        self._loading_message: Optional[str] = "loading..."
        self._running = False

    # === Event loop ===

    def _run_loop(self):
        asyncio.set_event_loop(self._loop)
        self._loop.run_forever()

    def _call_soon(self, callback: Callable[[], None]):
        """Run callback on the event loop thread (menu actions come from the tray thread)."""
        self._loop.call_soon_threadsafe(callback)

    def _init(self):
        """Bring up engines and assignments. Runs on the event loop."""
        log.info("Initializing engines...")
        self._reconfigure_lock = asyncio.Lock()
        self.robot = RobotEngine(self.pointer_engine, self.display_engine, Cursor())

        if not HID_AVAILABLE:
            log.warning("hidapi not available, no pointing devices will be found")
        self.pointer_engine.init(self._loop)
        self.display_engine.init(self._loop)

        # The initial table is built once, below
        self._cancel_listeners = [
            self.config_engine.register_listener(ConfigListener(
                config_changed=self._on_config_changed
            )),
            self.pointer_engine.register_listener(PointerEngineListener(
                devices_changed=lambda devices: self._on_hardware_changed()
            )),
            self.display_engine.register_listener(DisplayListener(
                displays_changed=lambda displays: self._on_hardware_changed()
            )),
        ]

        self._loading_message = None
        self._rebuild_menu()
        self._setup_movement()

    def _on_config_changed(self, changed):
        self._rebuild_menu()
        if 'log_file' in changed:
            self._update_file_logging()
        if 'devices' in changed:
            self._setup_movement()

    def _on_hardware_changed(self):
        self._rebuild_menu()
        self._setup_movement()

    def _setup_movement(self):
        asyncio.ensure_future(self._reconfigure())

    async def _reconfigure(self):
        """Re-apply the device mapping, one reconfiguration at a time."""
        async with self._reconfigure_lock:
            if not await self.robot.wait_idle(HANDOFF_WAIT):
                log.warning(f"Handoff still running after {HANDOFF_WAIT}s, rebuilding anyway")
            try:
                await self.robot.setup_assignments(self.config_engine.config)
            except Exception as e:
                log.error(f"Failed to set up assignments: {e}")

    async def _shutdown(self):
        log.debug("Disposing app")
        for cancel in self._cancel_listeners:
            cancel()
        self._cancel_listeners = []
        self.display_engine.stop()
        if self.robot:
            async with self._reconfigure_lock:
                await self.robot.wait_idle(HANDOFF_WAIT)
                await self.robot.dispose()
        await self.pointer_engine.dispose()

    # === Logging ===

    def _update_file_logging(self):
        """Add or remove the debug log file to match config.log_file."""
        root = logging.getLogger()
        if self.config_engine.config.log_file and self._file_handler is None:
            log_dir = get_config_dir()
            log_dir.mkdir(parents=True, exist_ok=True)
            self._file_handler = logging.FileHandler(log_dir / 'dynamouse.log')
            self._file_handler.setLevel(logging.DEBUG)
            self._file_handler.setFormatter(logging.Formatter(LOG_FORMAT, LOG_DATEFMT))
            root.addHandler(self._file_handler)
            log.info(f"Logging to {log_dir / 'dynamouse.log'}")
        elif not self.config_engine.config.log_file and self._file_handler is not None:
            root.removeHandler(self._file_handler)
            self._file_handler.close()
            self._file_handler = None

    # === Tray ===

    def _create_icon(self) -> 'Image.Image':
        """Create tray icon image: two screens sharing one pointer."""
        size = 64
        img = Image.new('RGBA', (size, size), (0, 0, 0, 0))
        draw = ImageDraw.Draw(img)

        screen_color = (66, 133, 244, 255)
        # Screens
        draw.rectangle([2, 14, 30, 38], outline=screen_color, width=4)
        draw.rectangle([34, 14, 62, 38], outline=screen_color, width=4)
        # Stands
        draw.line([16, 38, 16, 46], fill=screen_color, width=3)
        draw.line([48, 38, 48, 46], fill=screen_color, width=3)
        # Pointer
        draw.polygon([(26, 30), (26, 58), (33, 51), (40, 62), (44, 60), (37, 49), (46, 48)],
                     fill=(255, 255, 255, 255), outline=(0, 0, 0, 255))

        return img

    def _rebuild_menu(self):
        if self.tray:
            self.tray.update_menu()

    def _menu_items(self):
        """Build the tray menu from the current devices, displays and config."""
        if self._loading_message:
            return [pystray.MenuItem(self._loading_message, None, enabled=False)]

        def get_status(item):
            active = self.robot.active_assignment if self.robot else None
            if active:
                return f"Active: {active.name}"
            return "Active: none"

        items = [pystray.MenuItem(get_status, None, enabled=False), pystray.Menu.SEPARATOR]
        items.extend(self._assignment_menus())
        items.extend([
            pystray.Menu.SEPARATOR,
            pystray.MenuItem("Startup delay", self._startup_menu()),
            pystray.MenuItem("Debug", self._debug_menu()),
            pystray.MenuItem("Open Config", self._open_config),
            pystray.Menu.SEPARATOR,
            pystray.MenuItem("Quit", lambda icon, item: self._quit_from_menu()),
        ])
        return items

    def _assignment_menus(self):
        menus = []

        for device in self.pointer_engine.get_devices():
            product = device.product

            def current_display(product=product):
                settings = self.config_engine.config.devices.get(product)
                return settings.display if settings else None

            def choose(display_label, product=product):
                return lambda icon, item: self._call_soon(
                    lambda: self.config_engine.assign(product, display_label))

            entries = [
                pystray.MenuItem(
                    display.label,
                    choose(display.label),
                    checked=lambda item, label=display.label, current=current_display: current() == label,
                    radio=True
                )
                for display in self.display_engine.displays
            ]
            entries.append(pystray.Menu.SEPARATOR)
            entries.append(pystray.MenuItem(
                "None (uncontrolled)",
                choose(None),
                checked=lambda item, current=current_display: current() is None,
                radio=True
            ))
            menus.append(pystray.MenuItem(product, pystray.Menu(*entries)))

        if not menus:
            menus.append(pystray.MenuItem("No pointing devices found", None, enabled=False))
        return menus

    def _startup_menu(self):
        def choose(delay):
            return lambda icon, item: self._call_soon(
                lambda: self.config_engine.update(startup_delay=delay))

        return pystray.Menu(*[
            pystray.MenuItem(
                f"Startup delay {delay}s",
                choose(delay),
                checked=lambda item, delay=delay: self.config_engine.config.startup_delay == delay
            )
            for delay in STARTUP_DELAYS
        ])

    def _debug_menu(self):
        def toggle_log_file(icon, item):
            enabled = not self.config_engine.config.log_file
            self._call_soon(lambda: self.config_engine.update(log_file=enabled))

        return pystray.Menu(
            pystray.MenuItem(
                "File Logging",
                toggle_log_file,
                checked=lambda item: self.config_engine.config.log_file
            )
        )

    def _open_config(self, icon, item):
        config_path = get_config_path()
        log.info(f"Opening config: {config_path}")
        if sys.platform == 'win32':
            os.startfile(config_path)
        elif sys.platform == 'darwin':
            os.system(f'open "{config_path}"')
        else:
            os.system(f'xdg-open "{config_path}"')

    def _quit_from_menu(self):
        log.info("Quit requested from tray menu")
        self.stop()

    # === Lifecycle ===

    def start(self):
        """Start the daemon."""
        self._running = True

        log.info("="*60)
        log.info("DynaMouse starting...")
        log.info("="*60)

        self.config_engine.init()
        self._update_file_logging()

        self._loop_thread = threading.Thread(target=self._run_loop, daemon=True)
        self._loop_thread.start()

        delay = self.config_engine.config.startup_delay
        if delay > 0:
            self._loading_message = f"...waiting {delay}s (startup delay)"
            log.info(f"Startup delay: {delay}s")
        self._loop.call_soon_threadsafe(self._loop.call_later, delay, self._init)

        print("\nDynaMouse started!")
        print(f"Config: {self.config_engine.path}")
        print("\nAssign devices to displays from the tray menu or the config file.")
        print("Press Ctrl+Shift+Q to quit.\n")

        # Start system tray if available
        if TRAY_AVAILABLE:
            log.info("Starting system tray...")
            self.tray = pystray.Icon(
                'dynamouse',
                self._create_icon(),
                'DynaMouse',
                menu=pystray.Menu(self._menu_items)
            )
            self.tray.run()  # This blocks until quit
        else:
            log.warning("System tray not available, running in console mode")
            print("Press Ctrl+C to quit")
            try:
                while self._running:
                    threading.Event().wait(1)
            except KeyboardInterrupt:
                pass

        self.stop()

    def stop(self):
        """Stop the daemon."""
        if not self._running:
            return
        log.info("Stopping DynaMouse...")
        self._running = False

        if self._loop.is_running():
            future = asyncio.run_coroutine_threadsafe(self._shutdown(), self._loop)
            try:
                future.result(timeout=5.0)
            except Exception as e:
                log.error(f"Error during shutdown: {e}")
            self._loop.call_soon_threadsafe(self._loop.stop)

        if self.tray:
            self.tray.stop()

        log.info("DynaMouse stopped")


def configure_logging():
    logging.basicConfig(
        level=logging.DEBUG,
        format=LOG_FORMAT,
        datefmt=LOG_DATEFMT
    )


def main():
    """Main entry point."""
    import signal

    configure_logging()
    app = DynaMouse()

    def signal_handler(signum, frame):
        log.info(f"Received signal {signum}, shutting down...")
        app.stop()
        sys.exit(0)

    # Register signal handlers
    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    # Also register a global hotkey to quit (Ctrl+Shift+Q)
    try:
        import keyboard as kb
        def quit_hotkey():
            log.info("Quit hotkey pressed (Ctrl+Shift+Q)")
            app.stop()
        kb.add_hotkey('ctrl+shift+q', quit_hotkey, suppress=False)
        log.info("Registered quit hotkey: Ctrl+Shift+Q")
    except Exception as e:
        log.warning(f"Could not register quit hotkey: {e}")

    try:
        app.start()
    except KeyboardInterrupt:
        app.stop()
    except Exception as e:
        log.exception(f"Fatal error: {e}")
        sys.exit(1)


if __name__ == '__main__':
    main()
