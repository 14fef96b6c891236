"""The versioned configuration for the device plugin and GFD."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import IO, Any, Union

import yaml

from gpushare.flags import CliContext, FlagNames, Flags
from gpushare.imex import Imex
from gpushare.replicas import WarningLogger
from gpushare.resources import Resources
from gpushare.sharing import Sharing

VERSION = "v1"


@dataclass
class Config:
    """Configuration: version, flags, resources, sharing and IMEX settings."""

    version: str = VERSION
    flags: Flags = field(default_factory=Flags)
    resources: Resources = field(default_factory=Resources)
    sharing: Sharing = field(default_factory=Sharing)
    imex: Imex = field(default_factory=Imex)

    @classmethod
    def from_obj(cls, obj: Any) -> Config:
        if obj is None:
            obj = {}
        if not isinstance(obj, dict):
            raise ValueError(f"config must be a mapping, got {obj!r}")
        version = obj.get("version")
        if version is None:
            version = ""
        elif not isinstance(version, str):
            raise ValueError(f"version must be a string, got {version!r}")
        return cls(
            version=version,
            flags=Flags.from_obj(obj.get("flags")),
            resources=Resources.from_obj(obj.get("resources")),
            sharing=Sharing.from_obj(obj.get("sharing")),
            imex=Imex.from_obj(obj.get("imex")),
        )

    def to_obj(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "flags": self.flags.to_obj(),
            "resources": self.resources.to_obj(),
            "sharing": self.sharing.to_obj(),
            "imex": self.imex.to_obj(),
        }

    def to_json(self) -> str:
        return json.dumps(self.to_obj(), indent=2)


def parse_config_from(reader: IO[Any]) -> Config:
    """Parse YAML (or JSON) from a stream into a Config; raises ValueError."""
    try:
        data: Union[str, bytes] = reader.read()
    except OSError as err:
        raise ValueError(f"read error: {err}") from err
    try:
        config = Config.from_obj(yaml.safe_load(data))
    except (yaml.YAMLError, ValueError) as err:
        raise ValueError(f"unmarshal error: {err}") from err
    if config.version == "":
        config.version = VERSION
    if config.version != VERSION:
        raise ValueError(f"unknown version: {config.version}")
    return config


def parse_config(config_file: str) -> Config:
    """Parse the config file at the given path; raises ValueError on any failure."""
    try:
        reader = open(config_file, encoding="utf-8")
    except OSError as err:
        raise ValueError(f"error opening config file: {err}") from err
    with reader:
        try:
            return parse_config_from(reader)
        except ValueError as err:
            raise ValueError(f"error parsing config file: {err}") from err


def new_config(ctx: CliContext, flag_names: FlagNames) -> Config:
    """Build a Config from the config file (if any) overlaid with CLI values.

    Explicitly set command line values take precedence over the config file.
    """
    config = Config(version=VERSION)
    config_file = ctx.get("config-file")
    if config_file:
        try:
            config = parse_config(config_file)
        except ValueError as err:
            raise ValueError(f"unable to parse config file: {err}") from err

    config.flags.update_from_cli_flags(ctx, flag_names)
    if ctx.is_set("imex-channel-ids"):
        config.imex.channel_ids = [int(i) for i in ctx.get("imex-channel-ids") or []]
    if ctx.is_set("imex-required"):
        config.imex.required = bool(ctx.get("imex-required"))

    # Without an explicit dev root, device nodes live under the driver root.
    if not config.flags.nvidia_dev_root:
        config.flags.nvidia_dev_root = config.flags.nvidia_driver_root

    # Requests for more than one MPS replica are always rejected.
    if config.sharing.mps is not None:
        config.sharing.mps.fail_requests_greater_than_one = True

    return config


def disable_resource_naming_in_config(logger: WarningLogger, config: Config) -> None:
    """Drop custom resource naming and device selection, warning where it was set."""
    if config.resources.gpus or config.resources.migs:
        logger.warning(
            "Customizing the 'resources' field is not yet supported in the config. Ignoring..."
        )
    config.resources.gpus = []
    config.resources.migs = []

    config.sharing.time_slicing.disable_resource_renaming(logger, "timeSlicing")
    if config.sharing.mps is not None:
        config.sharing.mps.disable_resource_renaming(logger, "mps")