"""Tests for the mount lifecycle controller."""

import os
import signal

import pytest

from timevault import IDENTITY_MARKER
from timevault.__util__ import CommandRunner
from timevault.core import mount as mount_module
from timevault.core.mount import (
    MountController,
    MountError,
    MountTable,
    cleanup_mounts,
    install_cleanup_handlers,
)


class TestMountTable:
    """Tests for the /proc/mounts and fstab readers."""

    @pytest.fixture
    def table(self, tmp_path):
        proc = tmp_path / "mounts"
        proc.write_text(
            "/dev/sda1 / ext4 rw,relatime 0 0\n"
            "/dev/sdb1 /mnt/backup/1 ext4 ro,nosuid 0 0\n"
            "/dev/sdc1 /mnt/my\\040disk ext4 rw 0 0\n"
        )
        fstab = tmp_path / "fstab"
        fstab.write_text(
            "# static table\n"
            "\n"
            "UUID=abc  /mnt/backup/1  ext4  noauto,rw  0 2\n"
            "UUID=def\t/mnt/my\\040disk\text4\tnoauto 0 2\n"
        )
        return MountTable(proc_mounts=str(proc), fstab=str(fstab))

    def test_is_mounted(self, table):
        assert table.is_mounted("/mnt/backup/1")
        assert not table.is_mounted("/mnt/backup")

    def test_is_readonly(self, table):
        assert table.is_readonly("/mnt/backup/1") is True
        assert table.is_readonly("/") is False
        assert table.is_readonly("/mnt/backup/2") is None

    def test_escaped_blanks(self, table):
        assert table.is_mounted("/mnt/my disk")
        assert table.in_fstab("/mnt/my disk")

    def test_in_fstab(self, table):
        assert table.in_fstab("/mnt/backup/1")
        assert not table.in_fstab("/")

    def test_missing_files(self, tmp_path):
        table = MountTable(str(tmp_path / "none"), str(tmp_path / "none"))
        assert not table.is_mounted("/")
        assert not table.in_fstab("/")

    def test_last_entry_wins(self, tmp_path):
        proc = tmp_path / "mounts"
        proc.write_text("a /m ext4 ro 0 0\nb /m ext4 rw 0 0\n")
        table = MountTable(str(proc), str(tmp_path / "fstab"))
        assert table.is_readonly("/m") is False


class TestTrackedMountSet:
    def test_register_is_idempotent(self, tracked):
        tracked.register("/a")
        tracked.register("/a/")
        tracked.register("")
        assert tracked.paths == ["/a"]

    def test_unregister_normalises(self, tracked):
        tracked.register("/mnt/backup/1/")
        tracked.unregister("/mnt/backup/1")
        assert tracked.paths == []

    def test_drain_nested_first_and_empties(self, tracked):
        for path in ("/mnt", "/mnt/a/b", "/mnt/a"):
            tracked.register(path)
        seen = []
        tracked.drain(seen.append)
        assert seen == ["/mnt/a/b", "/mnt/a", "/mnt"]
        assert tracked.paths == []

    def test_drain_continues_after_failure(self, tracked):
        tracked.register("/a")
        tracked.register("/bb")
        seen = []

        def unmount(path):
            seen.append(path)
            raise OSError("busy")

        tracked.drain(unmount)
        assert seen == ["/bb", "/a"]
        assert tracked.paths == []


class TestMountLifecycle:
    """Tests for ensure_unmounted, mount_and_verify_writable and release."""

    def test_ensure_unmounted_noop(self, controller, fake_runner, media):
        mount, _ = media
        controller.ensure_unmounted(str(mount))
        assert fake_runner.commands == []

    def test_ensure_unmounted_unmounts(self, controller, fake_runner, fake_table, tracked, media):
        path = str(media[0])
        fake_table.mounted[path] = "rw"
        tracked.register(path)
        controller.ensure_unmounted(path)
        assert fake_runner.commands == [["umount", path]]
        assert tracked.paths == []

    def test_ensure_unmounted_failure(self, controller, fake_runner, fake_table, media):
        path = str(media[0])
        fake_table.mounted[path] = "rw"
        fake_runner.fail("umount", path, rc=32)
        with pytest.raises(MountError, match="failed with exit code 32"):
            controller.ensure_unmounted(path)

    def test_ensure_unmounted_not_detached(self, controller, fake_runner, fake_table, media):
        path = str(media[0])
        fake_table.mounted[path] = "rw"
        fake_runner.fail("umount", path, rc=0)
        with pytest.raises(MountError, match="did not detach"):
            controller.ensure_unmounted(path)

    def test_mount_and_verify_writable(self, controller, fake_runner, fake_table, tracked, media):
        path = str(media[0])
        controller.mount_and_verify_writable(path)
        assert fake_runner.commands == [["mount", path], ["mount", "-oremount,rw", path]]
        assert fake_table.is_readonly(path) is False
        assert tracked.paths == [path]

    def test_mount_failure_registers_nothing(self, controller, fake_runner, fake_table, tracked, media):
        path = str(media[0])
        fake_runner.fail("mount", path, rc=32)
        with pytest.raises(MountError, match=f"mount {path} failed"):
            controller.mount_and_verify_writable(path)
        assert tracked.paths == []
        assert not fake_table.mounted

    def test_mount_not_active(self, controller, fake_runner, tracked, media):
        path = str(media[0])
        fake_runner.fail("mount", path, rc=0)
        with pytest.raises(MountError, match="is not mounted"):
            controller.mount_and_verify_writable(path)
        assert tracked.paths == []
        assert fake_runner.commands[-1] == ["umount", path]

    def test_failed_remount_leaves_nothing_mounted(self, controller, fake_runner, fake_table, tracked, media):
        path = str(media[0])
        fake_runner.fail("mount", "-oremount,rw", path, rc=1)
        with pytest.raises(MountError, match="remount rw"):
            controller.mount_and_verify_writable(path)
        assert not fake_table.mounted
        assert tracked.paths == []

    def test_silently_readonly_media(self, controller, fake_runner, fake_table, tracked, media):
        path = str(media[0])
        fake_runner.readonly_media.add(path)
        with pytest.raises(MountError, match="is read-only"):
            controller.mount_and_verify_writable(path)
        assert fake_runner.commands[-2:] == [
            ["mount", "-oremount,ro", path],
            ["umount", path],
        ]
        assert not fake_table.mounted
        assert tracked.paths == []

    def test_release(self, controller, fake_table, tracked, media):
        path = str(media[0])
        controller.mount_and_verify_writable(path)
        controller.release(path)
        assert not fake_table.mounted
        assert tracked.paths == []

    def test_release_logs_failures(self, controller, fake_runner, tracked, media):
        path = str(media[0])
        tracked.register(path)
        fake_runner.fail("umount", path, rc=16)
        controller.release(path)
        assert tracked.paths == []


class KernelRunner(CommandRunner):
    """Maintains a mounts file with canonical mount points, as the kernel does."""

    def __init__(self, proc):
        super().__init__()
        self.proc = proc
        self.commands: list[list[str]] = []

    def _rows(self):
        return [line.split() for line in self.proc.read_text().splitlines()]

    def run(self, command):
        command = [str(c) for c in command]
        self.commands.append(command)
        target = os.path.normpath(command[-1])
        current = self._rows()
        rows = [row for row in current if row[1] != target]
        mounted = len(rows) != len(current)
        if command[0] == "mount" and len(command) == 2:
            rows.append(["/dev/sdz1", target, "ext4", "ro", "0", "0"])
        elif command[0] == "mount":
            if not mounted:
                return 32
            rows.append(["/dev/sdz1", target, "ext4", command[1].split(",")[-1], "0", "0"])
        elif command[0] == "umount" and not mounted:
            return 32
        self.proc.write_text("".join(" ".join(row) + "\n" for row in rows))
        return 0


class TestTrailingSlashMount:
    """Mount points given with a trailing slash still match the live table."""

    @pytest.fixture
    def kernel(self, tmp_path, media, tracked):
        proc = tmp_path / "proc-mounts"
        proc.write_text("")
        fstab = tmp_path / "fstab"
        fstab.write_text(f"UUID=abc {media[0]} ext4 noauto 0 2\n")
        runner = KernelRunner(proc)
        table = MountTable(str(proc), str(fstab))
        return runner, MountController(runner, table=table, tracked=tracked)

    def test_mounted_media_is_tracked_and_released(self, kernel, tracked, media):
        runner, controller = kernel
        controller.mount_and_verify_writable(str(media[0]) + "/")
        assert controller.table.is_readonly(str(media[0])) is False
        assert tracked.paths == [str(media[0])]

        controller.cleanup()

        assert runner.proc.read_text() == ""
        assert tracked.paths == []

    def test_ensure_unmounted(self, kernel, tracked, media):
        _, controller = kernel
        controller.mount_and_verify_writable(str(media[0]))
        controller.ensure_unmounted(str(media[0]) + "/")
        assert not controller.table.is_mounted(str(media[0]))
        assert tracked.paths == []

    def test_in_fstab(self, kernel, media):
        _, controller = kernel
        assert controller.table.in_fstab(str(media[0]) + "/")

    def test_restore_mount(self, kernel, tracked, media):
        _, controller = kernel
        controller.mount_for_restore(str(media[0]) + "/")
        assert controller.table.is_readonly(str(media[0])) is True
        assert tracked.paths == []


class TestMountForRestore:
    """Read-only mounts for browsing and restoring snapshots."""

    def test_read_only_and_left_mounted(self, controller, fake_runner, fake_table, tracked, media):
        path = str(media[0])
        controller.mount_for_restore(path)
        assert fake_runner.commands == [["mount", path], ["mount", "-oremount,ro", path]]
        assert fake_table.is_readonly(path) is True
        assert tracked.paths == []

    def test_missing_identity_marker(self, controller, fake_table, tracked, media):
        (media[0] / IDENTITY_MARKER).unlink()
        with pytest.raises(MountError, match="not a timevault device"):
            controller.mount_for_restore(str(media[0]))
        assert not fake_table.mounted
        assert tracked.paths == []

    def test_remount_failure_releases(self, controller, fake_runner, fake_table, media):
        path = str(media[0])
        fake_runner.fail("mount", "-oremount,ro", path, rc=1)
        with pytest.raises(MountError, match="remount ro"):
            controller.mount_for_restore(path)
        assert fake_runner.commands[-1] == ["umount", path]
        assert not fake_table.mounted

    def test_mount_failure(self, controller, fake_runner, media):
        path = str(media[0])
        fake_runner.fail("mount", path, rc=32)
        with pytest.raises(MountError, match="exit code 32"):
            controller.mount_for_restore(path)


class TestVerifyDestination:
    """Tests for verify_destination."""

    @pytest.fixture
    def mounted(self, controller, media):
        controller.mount_and_verify_writable(str(media[0]))
        return controller

    def test_valid(self, mounted, make_job):
        mounted.verify_destination(make_job())

    def test_missing_destination(self, mounted, make_job, media):
        job = make_job(dest=str(media[0] / "nope"))
        with pytest.raises(MountError, match="cannot access destination"):
            mounted.verify_destination(job)

    def test_destination_equal_to_mount(self, mounted, make_job, media):
        with pytest.raises(MountError, match="must be a subdirectory"):
            mounted.verify_destination(make_job(dest=str(media[0])))

    def test_symlink_escaping_mount(self, mounted, make_job, media, tmp_path):
        outside = tmp_path / "outside"
        outside.mkdir()
        link = media[0] / "escape"
        link.symlink_to(outside)
        with pytest.raises(MountError, match="is not under mount"):
            mounted.verify_destination(make_job(dest=str(link)))

    def test_destination_resolving_to_root(self, mounted, make_job, media):
        link = media[0] / "root"
        link.symlink_to("/")
        with pytest.raises(MountError, match="destination resolves to /"):
            mounted.verify_destination(make_job(dest=str(link)))

    def test_mount_resolving_to_root(self, controller, make_job):
        with pytest.raises(MountError, match="mount resolves to /"):
            controller.verify_destination(make_job(dest="/tmp", mount="/"))

    def test_not_mounted(self, controller, make_job):
        with pytest.raises(MountError, match="is not mounted"):
            controller.verify_destination(make_job())

    def test_not_in_fstab(self, mounted, fake_table, make_job):
        fake_table.fstab_entries.clear()
        with pytest.raises(MountError, match="not found in /etc/fstab"):
            mounted.verify_destination(make_job())

    def test_missing_identity_marker(self, mounted, make_job, media):
        (media[0] / IDENTITY_MARKER).unlink()
        with pytest.raises(MountError, match="not a timevault device"):
            mounted.verify_destination(make_job())

    def test_mount_prefix(self, mounted, make_job):
        mounted.mount_prefix = "/media"
        with pytest.raises(MountError, match="required prefix /media"):
            mounted.verify_destination(make_job())

    def test_missing_mount_setting(self, controller, make_job):
        with pytest.raises(MountError, match="mount is required"):
            controller.verify_destination(make_job(mount=""))


class TestCleanupHandlers:
    """Tests for signal and exit cleanup."""

    @pytest.fixture(autouse=True)
    def isolated(self, monkeypatch):
        monkeypatch.setattr(mount_module, "_cleanup_controller", None)
        monkeypatch.setattr(mount_module.atexit, "register", lambda fn: None)

    def test_cleanup_drains_registry(self, controller, fake_table, tracked, media):
        install_cleanup_handlers(controller, signals=())
        path = str(media[0])
        controller.mount_and_verify_writable(path)

        cleanup_mounts()

        assert not fake_table.mounted
        assert tracked.paths == []

    def test_cleanup_is_idempotent(self, controller, fake_runner, media):
        install_cleanup_handlers(controller, signals=())
        controller.mount_and_verify_writable(str(media[0]))
        cleanup_mounts()
        count = len(fake_runner.commands)
        cleanup_mounts()
        assert len(fake_runner.commands) == count

    def test_signal_handler_unmounts_then_exits(self, controller, fake_table, tracked, media, monkeypatch):
        install_cleanup_handlers(controller, signals=())
        controller.mount_and_verify_writable(str(media[0]))

        def fake_exit(code):
            raise SystemExit(code)

        monkeypatch.setattr(mount_module.os, "_exit", fake_exit)
        with pytest.raises(SystemExit) as exc:
            mount_module._handle_signal(signal.SIGTERM, None)
        assert exc.value.code == 1
        assert not fake_table.mounted
        assert tracked.paths == []

    def test_installs_signal_handlers(self, controller, monkeypatch):
        installed = {}
        monkeypatch.setattr(
            mount_module.signal, "signal", lambda s, h: installed.setdefault(s, h)
        )
        install_cleanup_handlers(controller)
        assert set(installed) == {signal.SIGINT, signal.SIGTERM}


def test_controller_defaults_to_process_registry(fake_runner):
    controller = MountController(fake_runner)
    assert controller.tracked is mount_module.TRACKED_MOUNTS
    assert isinstance(controller.table, MountTable)
    assert os.path.basename(controller.table.fstab) == "fstab"
