"""Setting up the tmpfs mount used as shared memory by the MPS daemon."""

from __future__ import annotations

import logging
import os
import shutil
import subprocess

logger = logging.getLogger(__name__)

_FALLBACK_SIZE = "65536k"
_DEFAULT_SHM_DIR = "/mps/shm"
_MEMINFO = "/proc/meminfo"


def default_shm_size(meminfo_path: str = _MEMINFO) -> str:
    """Half of the total memory from meminfo, or 65536k if it cannot be read."""
    try:
        with open(meminfo_path, encoding="utf-8") as meminfo:
            for line in meminfo:
                line = line.rstrip("\n")
                if not line.startswith("MemTotal:"):
                    continue
                parts = line[len("MemTotal:"):].strip().split(" ", 1)
                try:
                    mem_total = int(parts[0])
                except ValueError:
                    logger.error("could not convert MemTotal to an integer: %r", parts[0])
                    return _FALLBACK_SIZE
                unit = parts[1][0] if len(parts) == 2 and parts[1] else ""
                return f"{mem_total // 2}{unit}"
    except OSError as err:
        logger.error("failed to open %s: %s", meminfo_path, err)
        return _FALLBACK_SIZE
    return _FALLBACK_SIZE


def _run(command: list[str], action: str) -> None:
    result = subprocess.run(command, capture_output=True, text=True)
    if result.returncode != 0:
        output = (result.stderr or result.stdout or "").strip()
        raise RuntimeError(f"{action}: exit status {result.returncode}: {output}")


def _cleanup_mount_point(path: str, umount: str) -> None:
    """Unmount ``path`` if it is a mount point, then remove the directory."""
    if not os.path.exists(path):
        return
    if os.path.ismount(path):
        _run([umount, path], f"error unmounting {path}")
    os.rmdir(path)


def mount_shm(shm_dir: str = _DEFAULT_SHM_DIR) -> None:
    """Mount a fresh tmpfs at ``shm_dir``; raises RuntimeError on failure."""
    mount = shutil.which("mount")
    if mount is None:
        raise RuntimeError("error finding 'mount' executable")
    umount = shutil.which("umount") or "umount"

    try:
        _cleanup_mount_point(shm_dir, umount)
    except (OSError, RuntimeError) as err:
        raise RuntimeError(f"error unmounting {shm_dir}: {err}") from err

    try:
        os.makedirs(shm_dir, mode=0o755, exist_ok=True)
    except OSError as err:
        raise RuntimeError(f"error creating directory {shm_dir}: {err}") from err

    options = ["rw", "nosuid", "nodev", "noexec", "relatime", f"size={default_shm_size()}"]
    try:
        _run(
            [mount, "-t", "tmpfs", "-o", ",".join(options), "shm", shm_dir],
            "mount failed",
        )
    except (OSError, RuntimeError) as err:
        raise RuntimeError(f"error mounting {shm_dir} as tmpfs: {err}") from err