"""Configuration for IMEX channels of fabric-attached devices."""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any

IMEX_CHANNEL_ENV_VAR = "NVIDIA_IMEX_CHANNELS"


class InvalidImexConfigError(ValueError):
    """Raised when the IMEX configuration is not valid."""


def assert_channel_ids_valid(ids: list[int] | None) -> None:
    """Accept only no channel IDs or exactly ``[0]``."""
    if not ids:
        return
    if len(ids) == 1 and ids[0] == 0:
        return
    listed = " ".join(str(i) for i in ids)
    raise InvalidImexConfigError(
        f"invalid IMEX config: channelIDs must be [] or [0]; found [{listed}]"
    )


@dataclass
class Imex:
    """Channel IDs to inject into containers and whether they are required."""

    channel_ids: list[int] | None = None
    required: bool = False

    @classmethod
    def from_obj(cls, obj: Any) -> Imex:
        if obj is None:
            return cls()
        if not isinstance(obj, dict):
            raise ValueError(f"imex config must be a mapping, got {obj!r}")
        channel_ids = obj.get("channelIDs")
        if channel_ids is not None:
            if not isinstance(channel_ids, list):
                raise ValueError(f"channelIDs must be a list, got {channel_ids!r}")
            for item in channel_ids:
                if isinstance(item, bool) or not isinstance(item, int):
                    raise ValueError(f"channel ID must be an integer, got {item!r}")
            channel_ids = list(channel_ids)
        required = obj.get("required")
        if required is None:
            required = False
        elif not isinstance(required, bool):
            raise ValueError(f"required must be a boolean, got {required!r}")
        return cls(channel_ids=channel_ids, required=required)

    @classmethod
    def from_json(cls, text: str) -> Imex:
        return cls.from_obj(json.loads(text))

    def to_obj(self) -> dict[str, Any]:
        result: dict[str, Any] = {}
        if self.channel_ids:
            result["channelIDs"] = list(self.channel_ids)
        if self.required:
            result["required"] = True
        return result