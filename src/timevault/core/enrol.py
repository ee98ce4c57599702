"""Enrol a mount as a backup target by writing the identity marker."""

import logging
import os
from pathlib import Path

from .. import IDENTITY_MARKER
from ..config.paths import path_starts_with
from ..config.schema import RunMode
from .mount import MountController, MountError

logger = logging.getLogger(__name__)


def init_device(
    mount: str,
    controller: MountController,
    mode: RunMode,
    force: bool = False,
) -> Path:
    """Mount ``mount``, write ``.timevault`` at its root and release it.

    An empty root is required unless ``force`` is set. An existing marker is
    left as is.

    Returns:
        Path of the marker file

    Raises:
        MountError: The mount is unsuitable or could not be prepared
    """
    if not mount:
        raise MountError("mount path is empty")
    prefix = controller.mount_prefix
    if prefix and not path_starts_with(mount, prefix):
        raise MountError(f"mount {mount} does not start with required prefix {prefix}")
    try:
        mount_real = os.path.realpath(mount, strict=True)
    except OSError as e:
        raise MountError(f"cannot access mount {mount}: {e.strerror}")
    if mount_real == "/":
        raise MountError("mount resolves to /")
    if not controller.table.in_fstab(mount_real):
        raise MountError(f"mount {mount_real} not found in {controller.table.fstab}")

    controller.ensure_unmounted(mount)
    controller.mount_and_verify_writable(mount)
    marker = Path(mount_real) / IDENTITY_MARKER
    try:
        try:
            entries = os.listdir(mount_real)
        except OSError as e:
            raise MountError(f"cannot read mount {mount_real}: {e.strerror}")
        if entries and not force:
            raise MountError(
                f"mount {mount_real} is not empty; aborting init "
                "(use --force to override)"
            )

        if marker.exists():
            logger.info("timevault marker already exists: %s", marker)
        elif mode.dry_run:
            logger.info("dry-run: touch %s", marker)
        else:
            try:
                marker.touch()
            except OSError as e:
                raise MountError(f"create {marker}: {e.strerror}")
            logger.info("Created %s", marker)
    finally:
        controller.release(mount)
    return marker
