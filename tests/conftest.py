"""Pytest configuration and shared fixtures."""

import os
import shutil
from pathlib import Path

import pytest

from timevault import IDENTITY_MARKER
from timevault.__util__ import NICE_IONICE, CommandRunner
from timevault.config.schema import Config, Job, Options, RunPolicy
from timevault.core.mount import MountController, TrackedMountSet


class FakeMountTable:
    """In-memory stand-in for /proc/mounts and /etc/fstab."""

    fstab = "/etc/fstab"

    def __init__(self, fstab=()):
        self.mounted: dict[str, str] = {}
        self.fstab_entries = set(fstab)

    def is_mounted(self, path):
        return path in self.mounted

    def is_readonly(self, path):
        options = self.mounted.get(path)
        if options is None:
            return None
        return "ro" in options.split(",")

    def in_fstab(self, path):
        return path in self.fstab_entries


class FakeRunner(CommandRunner):
    """Records commands and simulates mount, umount, cp and rsync."""

    def __init__(self, table, **kwargs):
        super().__init__(**kwargs)
        self.table = table
        self.commands: list[list[str]] = []
        self.failures: dict[tuple, int] = {}
        self.readonly_media: set[str] = set()
        self.rsync_results: list[int] = []

    def fail(self, *command, rc=1):
        self.failures[tuple(command)] = rc

    def run(self, command):
        command = [str(c) for c in command]
        self.commands.append(command)
        if command[: len(NICE_IONICE)] == NICE_IONICE:
            command = command[len(NICE_IONICE) :]
        if tuple(command) in self.failures:
            return self.failures[tuple(command)]
        return self._simulate(command)

    def _simulate(self, command):
        name = command[0]
        if name == "mount" and len(command) == 2:
            self.table.mounted[command[1]] = "ro"
        elif name == "mount" and command[1] == "-oremount,rw":
            if command[2] in self.table.mounted and command[2] not in self.readonly_media:
                self.table.mounted[command[2]] = "rw"
        elif name == "mount" and command[1] == "-oremount,ro":
            if command[2] in self.table.mounted:
                self.table.mounted[command[2]] = "ro"
        elif name == "umount":
            self.table.mounted.pop(command[-1], None)
        elif name == "cp":
            src = os.path.normpath(command[-2])
            shutil.copytree(src, command[-1], symlinks=True, dirs_exist_ok=True)
        elif name == "rsync":
            rc = self.rsync_results.pop(0) if self.rsync_results else 0
            if rc == 0:
                Path(command[-1]).mkdir(parents=True, exist_ok=True)
            return rc
        return 0

    def ran(self, name):
        """Commands whose program (after nice/ionice) is ``name``."""
        out = []
        for command in self.commands:
            if command[: len(NICE_IONICE)] == NICE_IONICE:
                command = command[len(NICE_IONICE) :]
            if command[0] == name:
                out.append(command)
        return out


class RecordingMountSet(TrackedMountSet):
    """Mount registry whose contents tests can inspect."""

    @property
    def paths(self):
        return list(self._mounts)


@pytest.fixture
def media(tmp_path):
    """An enrolled backup mount with a destination directory below it."""
    root = Path(os.path.realpath(tmp_path))
    mount = root / "mnt" / "backup" / "1"
    dest = mount / "host"
    dest.mkdir(parents=True)
    (mount / IDENTITY_MARKER).touch()
    return mount, dest


@pytest.fixture
def fake_table(media):
    mount, _ = media
    return FakeMountTable(fstab=[str(mount)])


@pytest.fixture
def fake_runner(fake_table):
    return FakeRunner(fake_table)


@pytest.fixture
def make_runner(fake_table):
    """Factory for runners with non-default flags, such as dry_run."""
    return lambda **kwargs: FakeRunner(fake_table, **kwargs)


@pytest.fixture
def tracked():
    return RecordingMountSet()


@pytest.fixture
def controller(fake_runner, fake_table, tracked):
    return MountController(fake_runner, table=fake_table, tracked=tracked)


@pytest.fixture
def make_job(media):
    mount, dest = media

    def _make(name="host", **kwargs):
        kwargs.setdefault("source", "/srv/data/")
        kwargs.setdefault("dest", str(dest))
        kwargs.setdefault("mount", str(mount))
        kwargs.setdefault("copies", 2)
        return Job(name=name, **kwargs)

    return _make


def _make_config(*specs, **kwargs):
    """Build a Config from (name, policy, depends_on) tuples."""
    jobs = []
    for name, policy, deps in specs:
        jobs.append(
            Job(
                name=name,
                source=f"/src/{name}",
                dest=f"/mnt/backup/1/{name}",
                mount="/mnt/backup/1",
                copies=3,
                run_policy=RunPolicy(policy),
                depends_on=list(deps),
            )
        )
    return Config(jobs=jobs, options=kwargs.pop("options", Options()), **kwargs)


@pytest.fixture
def make_config():
    return _make_config


@pytest.fixture
def sample_config_toml():
    """Return a sample valid TOML configuration string."""
    return """
mount_prefix = "/mnt/backup"
excludes = ["/proc/*", "/sys/*"]

[options]
verbose = false
safe = false
rsync = ["--numeric-ids"]
lock = "run"

[[jobs]]
name = "system"
source = "/"
dest = "/mnt/backup/1/system"
mount = "/mnt/backup/1"
copies = 14
excludes = ["/home/*"]

[[jobs]]
name = "home"
source = "/home/"
dest = "/mnt/backup/1/home"
mount = "/mnt/backup/1"
copies = 30
run = "Demand"
depends_on = ["system"]

[[jobs]]
name = "archive"
source = "/srv/archive/"
dest = "/mnt/backup/2/archive"
mount = "/mnt/backup/2"
copies = 3
run = "off"
"""


@pytest.fixture
def config_file(tmp_path, sample_config_toml):
    """Create a temporary config file with sample content."""
    config_path = tmp_path / "timevault.toml"
    config_path.write_text(sample_config_toml)
    return config_path
