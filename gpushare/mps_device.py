"""Per-device MPS limits derived from a device's compute capability."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional, Tuple

_SEMVER = re.compile(
    r"v(0|[1-9][0-9]*)"
    r"(?:\.(0|[1-9][0-9]*)"
    r"(?:\.(0|[1-9][0-9]*)"
    r"(?:-([0-9A-Za-z.-]+))?"
    r"(?:\+([0-9A-Za-z.-]+))?)?)?"
)

_VOLTA = "v7.5"
_MAX_CLIENTS_VOLTA_OR_NEWER = 48
_MAX_CLIENTS_PRE_VOLTA = 16

_Version = Tuple[int, int, int, str]


class InvalidDeviceError(ValueError):
    """Raised when a device is configured in a way MPS cannot support."""


def _parse_version(text: str) -> Optional[_Version]:
    match = _SEMVER.fullmatch(text)
    if match is None:
        return None
    major, minor, patch, prerelease, _ = match.groups()
    return int(major), int(minor or 0), int(patch or 0), prerelease or ""


def _compare_prerelease(left: str, right: str) -> int:
    if left == right:
        return 0
    if not left:
        return 1
    if not right:
        return -1
    left_ids = left.split(".")
    right_ids = right.split(".")
    for a, b in zip(left_ids, right_ids):
        if a == b:
            continue
        a_num, b_num = a.isdigit(), b.isdigit()
        if a_num and b_num:
            return -1 if int(a) < int(b) else 1
        if a_num != b_num:
            return -1 if a_num else 1
        return -1 if a < b else 1
    if len(left_ids) == len(right_ids):
        return 0
    return -1 if len(left_ids) < len(right_ids) else 1


def _compare_versions(left: str, right: str) -> int:
    """Compare two semantic versions; an invalid version sorts before any valid one."""
    a = _parse_version(left)
    b = _parse_version(right)
    if a is None and b is None:
        return 0
    if a is None:
        return -1
    if b is None:
        return 1
    if a[:3] != b[:3]:
        return -1 if a[:3] < b[:3] else 1
    return _compare_prerelease(a[3], b[3])


@dataclass
class MpsDevice:
    """A device as seen by an MPS daemon: its compute capability and replica count."""

    compute_capability: str = ""
    replicas: int = 0

    def assert_replicas(self) -> None:
        """Raise InvalidDeviceError if more replicas are requested than MPS allows."""
        max_clients = self.max_clients()
        if self.replicas > max_clients:
            raise InvalidDeviceError(
                "invalid device maximum allowed replicas exceeded: "
                f"{self.replicas} > {max_clients}"
            )

    def max_clients(self) -> int:
        """The maximum number of clients an MPS server supports for this device."""
        if self.is_at_least_volta():
            return _MAX_CLIENTS_VOLTA_OR_NEWER
        return _MAX_CLIENTS_PRE_VOLTA

    def is_at_least_volta(self) -> bool:
        version = "v" + self.compute_capability.removeprefix("v")
        return _compare_versions(version, _VOLTA) >= 0