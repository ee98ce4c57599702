"""timevault: timevault/__init__.py."""

__version__ = "0.2.0"

CONFIG_FILE = "/etc/timevault.toml"
IDENTITY_MARKER = ".timevault"
