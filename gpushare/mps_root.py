"""Locations of the per-resource MPS pipe and log directories."""

from __future__ import annotations

import posixpath


def _join(*parts: str) -> str:
    """Join non-empty path parts and clean the result."""
    kept = [part for part in parts if part]
    if not kept:
        return ""
    cleaned = posixpath.normpath("/".join(kept))
    if cleaned.startswith("//"):
        cleaned = "/" + cleaned.lstrip("/")
    return cleaned


class MpsRoot(str):
    """The root under which per-resource MPS pipe and log directories live."""

    def log_dir(self, resource_name: str) -> str:
        return self.path(str(resource_name), "log")

    def pipe_dir(self, resource_name: str) -> str:
        return self.path(str(resource_name), "pipe")

    def shm_dir(self, resource_name: str) -> str:
        """The shm directory, which is the same for every resource."""
        return self.path("shm")

    def started_file(self, resource_name: str) -> str:
        return self.path(str(resource_name), ".started")

    def path(self, *args: str) -> str:
        """A path relative to this root."""
        return _join(str(self), *args)


CONTAINER_ROOT = MpsRoot("/mps")