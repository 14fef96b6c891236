"""Locating driver files under the root where the NVIDIA driver is installed."""

from __future__ import annotations

import os
import posixpath

_LIBRARY_SEARCH_PATHS = (
    "/usr/lib64",
    "/usr/lib/x86_64-linux-gnu",
    "/usr/lib/aarch64-linux-gnu",
    "/lib64",
    "/lib/x86_64-linux-gnu",
    "/lib/aarch64-linux-gnu",
)


def _join(*parts: str) -> str:
    kept = [part for part in parts if part]
    if not kept:
        return ""
    cleaned = posixpath.normpath("/".join(kept))
    if cleaned.startswith("//"):
        cleaned = "/" + cleaned.lstrip("/")
    return cleaned


def resolve_link(path: str) -> str:
    """Resolve ``path`` to its final target, like ``readlink -f``; raises OSError."""
    try:
        return os.path.realpath(path, strict=True)
    except OSError as err:
        raise OSError(f"error resolving link '{path}': {err}") from err


class DriverRoot(str):
    """The root path of a driver installation."""

    def join(self, *args: str) -> str:  # type: ignore[override]
        return _join(str(self), *args)

    def dev_root(self) -> str:
        """This root if it holds a /dev directory, otherwise '/'."""
        if self.is_dev_root():
            return str(self)
        return "/"

    def is_dev_root(self) -> bool:
        return os.path.isdir(_join(str(self), "dev"))

    def try_resolve_library(self, library_name: str) -> str:
        """Find the library under the standard library directories of this root.

        Falls back to the bare library name if the root is '/' or empty, or if
        the library is not found.
        """
        if str(self) in ("", "/"):
            return library_name
        for directory in _LIBRARY_SEARCH_PATHS:
            try:
                return resolve_link(self.join(directory, library_name))
            except OSError:
                continue
        return library_name