"""
Configuration loading and management.
"""

import logging
import os
import yaml
from pathlib import Path
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional, Set

from .observer import Observer, noop

log = logging.getLogger(__name__)

STARTUP_DELAYS = (0, 2, 5, 10)


@dataclass
class DeviceSettings:
    """Per-device settings, keyed by product name in Config.devices."""
    display: Optional[str] = None  # Display label, None means uncontrolled


@dataclass
class Config:
    """Main application configuration."""
    devices: Dict[str, DeviceSettings] = field(default_factory=dict)
    startup_delay: int = 0  # Seconds to wait before touching devices
    log_file: bool = False  # Also log to a file in the config directory

    def device_mapping(self) -> Dict[str, Optional[str]]:
        """Device product name -> display label."""
        return {name: settings.display for name, settings in self.devices.items()}


@dataclass
class ConfigListener:
    config_changed: Callable[[Set[str]], None] = noop


def get_config_dir() -> Path:
    """Get the per-user configuration directory."""
    if os.name == 'nt':  # Windows
        base = Path(os.environ.get('APPDATA', '~'))
    elif os.name == 'posix':
        if 'darwin' in os.uname().sysname.lower():  # macOS
            base = Path.home() / 'Library' / 'Application Support'
        else:  # Linux
            base = Path(os.environ.get('XDG_CONFIG_HOME', Path.home() / '.config'))
    else:
        base = Path.home()

    return base / 'dynamouse'


def get_config_path() -> Path:
    """Get the configuration file path."""
    return get_config_dir() / 'config.yaml'


def load_config(path: Optional[Path] = None) -> Config:
    """Load configuration from YAML file."""
    if path is None:
        path = get_config_path()

    if not path.exists():
        return create_default_config(path)

    with open(path, 'r') as f:
        data = yaml.safe_load(f) or {}

    config = Config()

    # Parse device -> display assignments
    for name, dev_data in (data.get('devices') or {}).items():
        if dev_data is None:
            dev_data = {}
        if not isinstance(dev_data, dict):
            log.warning(f"Skipping malformed device entry '{name}'")
            continue
        display = dev_data.get('display')
        config.devices[str(name)] = DeviceSettings(
            display=str(display) if display is not None else None
        )

    # Global settings
    try:
        config.startup_delay = int(data.get('startup_delay', 0) or 0)
    except (TypeError, ValueError):
        log.warning(f"Invalid startup_delay {data.get('startup_delay')!r}, using 0")
    config.log_file = bool(data.get('log_file', False))

    return config


def create_default_config(path: Path) -> Config:
    """Create and save a default configuration."""
    default_yaml = """# DynaMouse Configuration

# Seconds to wait after launch before taking over pointing devices
startup_delay: 0

# Also write debug logs to dynamouse.log next to this file
log_file: false

# Which display each pointing device controls, keyed by product name.
# Use the tray menu to fill this in, or edit by hand:
#
# devices:
#   "USB Optical Mouse":
#     display: "DP-1"
#   "Kensington SlimBlade Trackball":
#     display: "HDMI-1"
devices: {}
"""

    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, 'w') as f:
        f.write(default_yaml)

    return load_config(path)


def save_config(config: Config, path: Optional[Path] = None):
    """Save configuration to YAML file."""
    if path is None:
        path = get_config_path()

    data = {
        'startup_delay': config.startup_delay,
        'log_file': config.log_file,
        'devices': {}
    }

    for name, settings in config.devices.items():
        data['devices'][name] = {
            'display': settings.display
        }

    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, 'w') as f:
        yaml.dump(data, f, default_flow_style=False)


class ConfigEngine(Observer[ConfigListener]):
    """Holds the live configuration and persists every update."""

    def __init__(self, path: Optional[Path] = None):
        super().__init__()
        self.path = path or get_config_path()
        self.config = Config()

    def init(self):
        """Load configuration from disk."""
        log.info(f"Loading configuration from {self.path}")
        self.config = load_config(self.path)

    def update(self, **changes):
        """
        Apply changes to top-level settings, save, and notify.

        Listeners receive the set of keys that actually changed.
        """
        changed = set()
        for key, value in changes.items():
            if not hasattr(self.config, key):
                raise KeyError(f"Unknown config key '{key}'")
            if getattr(self.config, key) != value:
                setattr(self.config, key, value)
                changed.add(key)

        if not changed:
            return

        save_config(self.config, self.path)
        log.info(f"Configuration updated: {sorted(changed)}")
        self.iterate_listeners(lambda listener: listener.config_changed(changed))

    def assign(self, product: str, display: Optional[str]):
        """Bind a device to a display, or release it with display=None."""
        devices = dict(self.config.devices)
        devices[product] = DeviceSettings(display=display)
        self.update(devices=devices)
