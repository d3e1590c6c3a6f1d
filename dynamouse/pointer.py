"""
Pointing device discovery and movement reporting.

Uses hidapi for raw HID access. A connected PointerDevice reads reports on
a background thread and hands every report back to the asyncio loop as a
`moved` notification; a disconnected device reports nothing and leaves the
OS input stack alone.
"""

import asyncio
import logging
import threading
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from .observer import Observer, noop

try:
    import hid
    HID_AVAILABLE = True
except ImportError:
    HID_AVAILABLE = False

log = logging.getLogger(__name__)

# Standard HID usage pages and usages for pointing devices
USAGE_PAGE_GENERIC_DESKTOP = 0x01
USAGE_MOUSE = 0x02
USAGE_POINTER = 0x01

REPORT_SIZE = 64
READ_TIMEOUT_MS = 100


@dataclass
class HIDDeviceInfo:
    """Represents an enumerated HID interface."""
    path: bytes
    vid: int
    pid: int
    product: str
    manufacturer: str
    serial: str
    usage_page: int
    usage: int

    @property
    def is_pointing_device(self) -> bool:
        """Check if this is a pointing device (mouse, trackball, etc)."""
        return (
            self.usage_page == USAGE_PAGE_GENERIC_DESKTOP and
            self.usage in (USAGE_MOUSE, USAGE_POINTER)
        )

    @property
    def display_name(self) -> str:
        return self.product or self.manufacturer or "Unknown Device"

    @classmethod
    def from_enumeration(cls, dev_info: dict) -> "HIDDeviceInfo":
        return cls(
            path=dev_info.get('path', b''),
            vid=dev_info.get('vendor_id', 0),
            pid=dev_info.get('product_id', 0),
            product=dev_info.get('product_string', '') or '',
            manufacturer=dev_info.get('manufacturer_string', '') or '',
            serial=dev_info.get('serial_number', '') or '',
            usage_page=dev_info.get('usage_page', 0),
            usage=dev_info.get('usage', 0)
        )


def enumerate_pointing_devices() -> List[HIDDeviceInfo]:
    """
    Enumerate all connected pointing devices.
    Returns one entry per mouse/trackball HID interface.
    """
    if not HID_AVAILABLE:
        return []

    try:
        infos = [HIDDeviceInfo.from_enumeration(d) for d in hid.enumerate()]
    except Exception as e:
        log.warning(f"HID enumeration failed: {e}")
        return []

    return [info for info in infos if info.is_pointing_device]


@dataclass
class PointerListener:
    moved: Callable[[], None] = noop


@dataclass
class PointerEngineListener:
    devices_changed: Callable[[List["PointerDevice"]], None] = noop


class PointerDevice(Observer[PointerListener]):
    """
    A single pointing device.

    connect() starts movement reporting, disconnect() stops it and releases
    the HID handle. Both are idempotent.
    """

    def __init__(self, info: HIDDeviceInfo, open_device: Optional[Callable[[bytes], object]] = None):
        super().__init__()
        self.info = info
        self._open_device = open_device or _open_hid_path
        self._handle = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._reader: Optional[threading.Thread] = None
        self._reading = threading.Event()

    @property
    def product(self) -> str:
        return self.info.display_name

    @property
    def connected(self) -> bool:
        return self._handle is not None

    def __repr__(self):
        return f"PointerDevice({self.product!r}, {self.info.vid:04X}:{self.info.pid:04X})"

    async def connect(self):
        """Start reporting movement."""
        if self._handle is not None:
            return
        self._loop = asyncio.get_running_loop()
        self._handle = await self._loop.run_in_executor(None, self._open_device, self.info.path)
        self._reading.set()
        self._reader = threading.Thread(
            target=self._read_loop,
            args=(self._handle,),
            name=f"hid-reader-{self.product}",
            daemon=True
        )
        self._reader.start()
        log.debug(f"Connected {self.product}")

    async def disconnect(self):
        """Stop reporting movement and release the device."""
        if self._handle is None:
            return
        handle, reader = self._handle, self._reader
        self._handle = None
        self._reader = None
        self._reading.clear()
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._close, handle, reader)
        log.debug(f"Disconnected {self.product}")

    @staticmethod
    def _close(handle, reader: Optional[threading.Thread]):
        if reader is not None:
            reader.join(timeout=1.0)
        handle.close()

    def _read_loop(self, handle):
        """Reader thread - forwards every report to the event loop."""
        while self._reading.is_set():
            try:
                report = handle.read(REPORT_SIZE, READ_TIMEOUT_MS)
            except (OSError, ValueError) as e:
                log.warning(f"Read from {self.product} failed: {e}")
                break
            if report and self._reading.is_set():
                self._loop.call_soon_threadsafe(self.notify_moved)

    def notify_moved(self):
        """Fire the moved notification (event loop thread)."""
        self.iterate_listeners(lambda listener: listener.moved())


def _open_hid_path(path: bytes):
    if not HID_AVAILABLE:
        raise RuntimeError("hidapi is not available, cannot open pointing devices")
    handle = hid.device()
    handle.open_path(path)
    handle.set_nonblocking(False)
    return handle


class PointerEngine(Observer[PointerEngineListener]):
    """
    Tracks connected pointing devices, keyed by product name.

    Devices whose product is unchanged across re-enumeration keep their
    PointerDevice instance, so live Assignments are not invalidated.
    """

    def __init__(self, enumerate_devices: Callable[[], List[HIDDeviceInfo]] = enumerate_pointing_devices,
                 poll_interval: float = 1.0):
        super().__init__()
        self._enumerate = enumerate_devices
        self._poll_interval = poll_interval
        self._devices: Dict[str, PointerDevice] = {}
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def init(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        """Enumerate devices and start watching for hotplug."""
        self._loop = loop
        self.refresh()
        if loop is None or self._thread is not None:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._monitor_loop, daemon=True)
        self._thread.start()

    def refresh(self, infos: Optional[List[HIDDeviceInfo]] = None) -> bool:
        """
        Rebuild the device table from an enumeration.

        Returns True and notifies listeners when the set of products changed.
        """
        if infos is None:
            infos = self._enumerate()

        devices: Dict[str, PointerDevice] = {}
        for info in infos:
            # Devices expose several interfaces, the first one wins
            if info.display_name in devices:
                continue
            existing = self._devices.get(info.display_name)
            devices[info.display_name] = existing or PointerDevice(info)

        changed = devices.keys() != self._devices.keys()
        self._devices = devices
        if changed:
            log.info(f"Pointing devices: {list(devices.keys())}")
            current = self.get_devices()
            self.iterate_listeners(lambda listener: listener.devices_changed(current))
        return changed

    def _monitor_loop(self):
        """Poll for new and removed devices."""
        while not self._stop_event.wait(self._poll_interval):
            try:
                infos = self._enumerate()
            except Exception as e:
                log.warning(f"Device poll failed: {e}")
                continue
            products = {info.display_name for info in infos}
            if products != set(self._devices.keys()):
                self._loop.call_soon_threadsafe(self.refresh, infos)

    def get_devices(self) -> List[PointerDevice]:
        return list(self._devices.values())

    def get_device(self, name: str) -> Optional[PointerDevice]:
        """Find a device by product name."""
        return self._devices.get(name)

    async def dispose(self):
        """Stop polling and release every device."""
        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout=2.0)
            self._thread = None
        for device in self.get_devices():
            await device.disconnect()
        log.info("Pointer engine disposed")
