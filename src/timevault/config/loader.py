"""TOML configuration loading and validation.

Handles config file discovery, parsing, and validation with helpful error messages.
"""

import os
import tomllib
from pathlib import Path
from typing import Any

from .. import CONFIG_FILE
from ..__util__ import AbortError
from .paths import is_safe_name, job_path_error
from .schema import Config, Job, LockGranularity, Options, RunPolicy


class ConfigError(AbortError):
    """Configuration loading or validation error."""

    pass


# Config file search paths in priority order
CONFIG_PATHS = [
    Path(CONFIG_FILE),
    Path.home() / ".config" / "timevault" / "config.toml",
]


def find_config_file(explicit_path: str | None = None) -> Path | None:
    """Find configuration file.

    Args:
        explicit_path: Explicitly specified config path (highest priority)

    Returns:
        Path to config file, or None if not found
    """
    if explicit_path:
        path = Path(explicit_path)
        if path.exists():
            return path
        raise ConfigError(f"Config file not found: {explicit_path}")

    for path in CONFIG_PATHS:
        if path.exists():
            return path

    return None


def _string_list(data: dict[str, Any], key: str, where: str) -> list[str]:
    value = data.get(key, [])
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise ConfigError(f"{where}: '{key}' must be a list of strings")
    return list(value)


def _parse_options(data: Any) -> Options:
    """Parse run-wide options from dict."""
    if not isinstance(data, dict):
        raise ConfigError("options must be a table")
    granularity = data.get("lock", LockGranularity.RUN.value)
    try:
        lock_granularity = LockGranularity(str(granularity).lower())
    except ValueError:
        raise ConfigError(
            f"options: invalid lock granularity {granularity}; expected run or job"
        ) from None

    lock_file = data.get("lock_file", Options.lock_file)
    if not isinstance(lock_file, str) or not lock_file:
        raise ConfigError("options: lock_file must be a non-empty string")

    return Options(
        verbose=bool(data.get("verbose", False)),
        safe=bool(data.get("safe", False)),
        rsync=_string_list(data, "rsync", "options"),
        lock_granularity=lock_granularity,
        lock_file=lock_file,
    )


def _parse_job(
    data: Any, global_excludes: list[str], mount_prefix: str | None
) -> Job:
    """Parse and validate one job from dict."""
    if not isinstance(data, dict):
        raise ConfigError("jobs entries must be tables")
    name = str(data.get("name", "")).strip()
    if not name:
        raise ConfigError("job name is required")
    if not is_safe_name(name):
        raise ConfigError(
            f"job {name} name must use only letters, digits, '.', '-', '_'"
        )

    where = f"job {name}"
    try:
        run_policy = RunPolicy.parse(str(data.get("run", "auto")))
    except ValueError as e:
        raise ConfigError(f"{where}: {e}") from None

    source = str(data.get("source", "")).strip()
    if not source:
        raise ConfigError(f"{where}: source path is empty")

    copies = data.get("copies", 0)
    if not isinstance(copies, int) or isinstance(copies, bool) or copies < 1:
        raise ConfigError(f"{where}: copies must be a positive integer")

    job = Job(
        name=name,
        source=source,
        dest=str(data.get("dest", "")),
        copies=copies,
        mount=str(data.get("mount", "")),
        run_policy=run_policy,
        excludes=global_excludes + _string_list(data, "excludes", where),
        depends_on=_string_list(data, "depends_on", where),
    )

    reason = job_path_error(job, mount_prefix)
    if reason:
        raise ConfigError(f"{where}: {reason}")
    job.dest = os.path.normpath(job.dest)
    job.mount = os.path.normpath(job.mount)
    return job


def _validate_config(config: Config) -> list[str]:
    """Validate configuration and return list of warnings."""
    warnings = []

    if not config.jobs:
        warnings.append("No jobs configured")

    seen = set()
    for job in config.jobs:
        if job.name in seen:
            raise ConfigError(f"duplicate job name {job.name}")
        seen.add(job.name)

    mounts: dict[str, str] = {}
    for job in config.jobs:
        dest = job.dest.rstrip("/")
        if dest in mounts:
            warnings.append(
                f"Jobs '{mounts[dest]}' and '{job.name}' share destination {job.dest}"
            )
        mounts[dest] = job.name

    return warnings


def parse_config(data: dict[str, Any]) -> tuple[Config, list[str]]:
    """Build a validated Config from already-parsed TOML data."""
    mount_prefix = data.get("mount_prefix") or None
    if mount_prefix is not None:
        if not isinstance(mount_prefix, str):
            raise ConfigError("mount_prefix must be a string")
        if not mount_prefix.startswith("/"):
            raise ConfigError("mount_prefix must be absolute")
        mount_prefix = os.path.normpath(mount_prefix)

    global_excludes = _string_list(data, "excludes", "config")
    options = _parse_options(data.get("options", {}))

    jobs_data = data.get("jobs")
    if not isinstance(jobs_data, list):
        raise ConfigError("missing jobs")

    jobs = [_parse_job(j, global_excludes, mount_prefix) for j in jobs_data]
    config = Config(
        jobs=jobs,
        excludes=global_excludes,
        mount_prefix=mount_prefix,
        options=options,
    )

    warnings = _validate_config(config)
    return config, warnings


def load_config(path: Path | str) -> tuple[Config, list[str]]:
    """Load and validate configuration from TOML file.

    Args:
        path: Path to configuration file

    Returns:
        Tuple of (Config object, list of warnings)

    Raises:
        ConfigError: If config is invalid or cannot be parsed
    """
    path = Path(path)

    try:
        with open(path, "rb") as f:
            data = tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"Invalid TOML syntax: {e}")
    except OSError as e:
        raise ConfigError(f"Cannot read config file: {e}")

    return parse_config(data)


def generate_example_config() -> str:
    """Generate example configuration file content."""
    return """# timevault configuration
# See documentation for full options

# Every job mount must live under this prefix
mount_prefix = "/mnt/backup"

# Excludes applied to every job (rsync --exclude-from patterns)
excludes = ["/proc/*", "/sys/*", "/dev/*", "/run/*", "/tmp/*"]

[options]
verbose = false
safe = false
rsync = []          # extra rsync arguments
lock = "run"        # "run" (one lock per run) or "job" (one lock per job)

[[jobs]]
name = "system"
source = "/"
dest = "/mnt/backup/1/system"
mount = "/mnt/backup/1"
copies = 14
run = "auto"
excludes = ["/home/*"]

[[jobs]]
name = "home"
source = "/home/"
dest = "/mnt/backup/1/home"
mount = "/mnt/backup/1"
copies = 30
run = "demand"
depends_on = ["system"]
"""
