"""The sharing strategies supported for devices."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from gpushare.replicas import ReplicatedResources


class SharingStrategy(str, Enum):
    """The active way in which devices are shared."""

    MPS = "mps"
    NONE = "none"
    TIME_SLICING = "time-slicing"


@dataclass
class Sharing:
    """Replication settings for time-slicing and for MPS."""

    time_slicing: ReplicatedResources = field(default_factory=ReplicatedResources)
    mps: ReplicatedResources | None = None

    def sharing_strategy(self) -> SharingStrategy:
        if self.mps is not None and self.mps.is_replicated():
            return SharingStrategy.MPS
        if self.time_slicing.is_replicated():
            return SharingStrategy.TIME_SLICING
        return SharingStrategy.NONE

    def replicated_resources(self) -> ReplicatedResources:
        """The resources of the active strategy: MPS if configured, else time-slicing."""
        if self.mps is not None:
            return self.mps
        return self.time_slicing

    @classmethod
    def from_obj(cls, obj: Any) -> Sharing:
        if obj is None:
            return cls()
        if not isinstance(obj, dict):
            raise ValueError(f"sharing must be a mapping, got {obj!r}")
        time_slicing = ReplicatedResources()
        if obj.get("timeSlicing") is not None:
            time_slicing = ReplicatedResources.from_obj(obj["timeSlicing"])
        mps = None
        if obj.get("mps") is not None:
            mps = ReplicatedResources.from_obj(obj["mps"])
        return cls(time_slicing=time_slicing, mps=mps)

    def to_obj(self) -> dict[str, Any]:
        result: dict[str, Any] = {"timeSlicing": self.time_slicing.to_obj()}
        if self.mps is not None:
            result["mps"] = self.mps.to_obj()
        return result