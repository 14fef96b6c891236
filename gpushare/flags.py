"""Command line flags for the device plugin and GFD, and how CLI values update them."""

from __future__ import annotations

import json
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Callable, Union

from gpushare.duration import Duration, parse_duration

FlagNames = Iterable[Union[str, Iterable[str]]]

_TRUE_WORDS = frozenset({"1", "t", "true"})
_FALSE_WORDS = frozenset({"0", "f", "false"})


@dataclass
class CliContext:
    """Values of parsed command line flags.

    ``values`` holds each flag's effective value (including defaults),
    ``explicitly_set`` names the flags given on the command line or through the
    environment, and ``aliases`` maps an alternative flag name to its canonical name.
    """

    values: Mapping[str, Any] = field(default_factory=dict)
    explicitly_set: frozenset[str] = frozenset()
    aliases: Mapping[str, str] = field(default_factory=dict)

    def _canonical(self, name: str) -> str:
        return self.aliases.get(name, name)

    def is_set(self, name: str) -> bool:
        return self._canonical(name) in self.explicitly_set

    def get(self, name: str) -> Any:
        return self.values.get(self._canonical(name))


def _to_string(value: Any) -> str:
    return "" if value is None else str(value)


def _to_bool(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        word = value.strip().lower()
        if word in _TRUE_WORDS:
            return True
        if word in _FALSE_WORDS:
            return False
        raise ValueError(f"invalid boolean value: {value!r}")
    return bool(value)


def _to_string_list(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    return [str(item) for item in value]


def _to_duration(value: Any) -> Duration:
    if value is None:
        return Duration(0)
    if isinstance(value, Duration):
        return value
    if isinstance(value, timedelta):
        return Duration(value // timedelta(microseconds=1) * 1000)
    if isinstance(value, str):
        return Duration(parse_duration(value))
    return Duration(int(value))


def _opt_str(obj: Mapping[str, Any], key: str) -> str | None:
    value = obj.get(key)
    if value is not None and not isinstance(value, str):
        raise ValueError(f"{key} must be a string, got {value!r}")
    return value


def _opt_bool(obj: Mapping[str, Any], key: str) -> bool | None:
    value = obj.get(key)
    if value is not None and not isinstance(value, bool):
        raise ValueError(f"{key} must be a boolean, got {value!r}")
    return value


def _opt_duration(obj: Mapping[str, Any], key: str) -> Duration | None:
    value = obj.get(key)
    return None if value is None else Duration.from_obj(value)


def _device_list_strategy(value: Any) -> list[str] | None:
    """Accept either a single strategy or a list of strategies."""
    if value is None:
        return None
    if isinstance(value, str):
        return [value]
    if isinstance(value, list) and all(isinstance(item, str) for item in value):
        return list(value)
    raise ValueError(f"invalid deviceListStrategy: {json.dumps(value)}")


def _mapping(obj: Any, what: str) -> Mapping[str, Any]:
    if not isinstance(obj, Mapping):
        raise ValueError(f"{what} must be a mapping, got {obj!r}")
    return obj


@dataclass
class PluginCommandLineFlags:
    """Flags specific to the device plugin."""

    pass_device_specs: bool | None = None
    device_list_strategy: list[str] | None = None
    device_id_strategy: str | None = None
    cdi_annotation_prefix: str | None = None
    nvidia_ctk_path: str | None = None
    container_driver_root: str | None = None

    @classmethod
    def from_obj(cls, obj: Any) -> PluginCommandLineFlags:
        obj = _mapping(obj, "plugin flags")
        return cls(
            pass_device_specs=_opt_bool(obj, "passDeviceSpecs"),
            device_list_strategy=_device_list_strategy(obj.get("deviceListStrategy")),
            device_id_strategy=_opt_str(obj, "deviceIDStrategy"),
            cdi_annotation_prefix=_opt_str(obj, "cdiAnnotationPrefix"),
            nvidia_ctk_path=_opt_str(obj, "nvidiaCTKPath"),
            container_driver_root=_opt_str(obj, "containerDriverRoot"),
        )

    def to_obj(self) -> dict[str, Any]:
        return {
            "passDeviceSpecs": self.pass_device_specs,
            "deviceListStrategy": (
                None if self.device_list_strategy is None else list(self.device_list_strategy)
            ),
            "deviceIDStrategy": self.device_id_strategy,
            "cdiAnnotationPrefix": self.cdi_annotation_prefix,
            "nvidiaCTKPath": self.nvidia_ctk_path,
            "containerDriverRoot": self.container_driver_root,
        }


@dataclass
class GFDCommandLineFlags:
    """Flags specific to GPU feature discovery."""

    oneshot: bool | None = None
    no_timestamp: bool | None = None
    sleep_interval: Duration | None = None
    output_file: str | None = None
    machine_type_file: str | None = None

    @classmethod
    def from_obj(cls, obj: Any) -> GFDCommandLineFlags:
        obj = _mapping(obj, "gfd flags")
        return cls(
            oneshot=_opt_bool(obj, "oneshot"),
            no_timestamp=_opt_bool(obj, "noTimestamp"),
            sleep_interval=_opt_duration(obj, "sleepInterval"),
            output_file=_opt_str(obj, "outputFile"),
            machine_type_file=_opt_str(obj, "machineTypeFile"),
        )

    def to_obj(self) -> dict[str, Any]:
        return {
            "oneshot": self.oneshot,
            "noTimestamp": self.no_timestamp,
            "sleepInterval": None if self.sleep_interval is None else self.sleep_interval.to_obj(),
            "outputFile": self.output_file,
            "machineTypeFile": self.machine_type_file,
        }


_Converter = Callable[[Any], Any]

_COMMON_FLAGS: dict[str, tuple[str, _Converter]] = {
    "mig-strategy": ("mig_strategy", _to_string),
    "fail-on-init-error": ("fail_on_init_error", _to_bool),
    "mps-root": ("mps_root", _to_string),
    "driver-root": ("nvidia_driver_root", _to_string),
    "nvidia-driver-root": ("nvidia_driver_root", _to_string),
    "dev-root": ("nvidia_dev_root", _to_string),
    "nvidia-dev-root": ("nvidia_dev_root", _to_string),
    "gds-enabled": ("gds_enabled", _to_bool),
    "mofed-enabled": ("mofed_enabled", _to_bool),
    "use-node-feature-api": ("use_node_feature_api", _to_bool),
    "device-discovery-strategy": ("device_discovery_strategy", _to_string),
}

_PLUGIN_FLAGS: dict[str, tuple[str, _Converter]] = {
    "pass-device-specs": ("pass_device_specs", _to_bool),
    "device-list-strategy": ("device_list_strategy", _to_string_list),
    "device-id-strategy": ("device_id_strategy", _to_string),
    "cdi-annotation-prefix": ("cdi_annotation_prefix", _to_string),
    "nvidia-cdi-hook-path": ("nvidia_ctk_path", _to_string),
    "nvidia-ctk-path": ("nvidia_ctk_path", _to_string),
    "container-driver-root": ("container_driver_root", _to_string),
}

_GFD_FLAGS: dict[str, tuple[str, _Converter]] = {
    "oneshot": ("oneshot", _to_bool),
    "output-file": ("output_file", _to_string),
    "sleep-interval": ("sleep_interval", _to_duration),
    "no-timestamp": ("no_timestamp", _to_bool),
    "machine-type-file": ("machine_type_file", _to_string),
}


def _update_from_cli_flag(
    target: Any, table: Mapping[str, tuple[str, _Converter]], ctx: CliContext, name: str
) -> None:
    """Set the attribute for ``name`` if the flag was given or the attribute is unset."""
    entry = table.get(name)
    if entry is None:
        return
    attr, convert = entry
    if ctx.is_set(name) or getattr(target, attr) is None:
        setattr(target, attr, convert(ctx.get(name)))


@dataclass
class Flags:
    """The full list of flags used to configure the device plugin and GFD."""

    mig_strategy: str | None = None
    fail_on_init_error: bool | None = None
    mps_root: str | None = None
    nvidia_driver_root: str | None = None
    nvidia_dev_root: str | None = None
    gds_enabled: bool | None = None
    mofed_enabled: bool | None = None
    use_node_feature_api: bool | None = None
    device_discovery_strategy: str | None = None
    plugin: PluginCommandLineFlags | None = None
    gfd: GFDCommandLineFlags | None = None

    @classmethod
    def from_obj(cls, obj: Any) -> Flags:
        if obj is None:
            return cls()
        obj = _mapping(obj, "flags")
        plugin = obj.get("plugin")
        gfd = obj.get("gfd")
        return cls(
            mig_strategy=_opt_str(obj, "migStrategy"),
            fail_on_init_error=_opt_bool(obj, "failOnInitError"),
            mps_root=_opt_str(obj, "mpsRoot"),
            nvidia_driver_root=_opt_str(obj, "nvidiaDriverRoot"),
            nvidia_dev_root=_opt_str(obj, "nvidiaDevRoot"),
            gds_enabled=_opt_bool(obj, "gdsEnabled"),
            mofed_enabled=_opt_bool(obj, "mofedEnabled"),
            use_node_feature_api=_opt_bool(obj, "useNodeFeatureAPI"),
            device_discovery_strategy=_opt_str(obj, "deviceDiscoveryStrategy"),
            plugin=None if plugin is None else PluginCommandLineFlags.from_obj(plugin),
            gfd=None if gfd is None else GFDCommandLineFlags.from_obj(gfd),
        )

    @classmethod
    def from_json(cls, text: str) -> Flags:
        return cls.from_obj(json.loads(text))

    def to_obj(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "migStrategy": self.mig_strategy,
            "failOnInitError": self.fail_on_init_error,
        }
        if self.mps_root is not None:
            result["mpsRoot"] = self.mps_root
        if self.nvidia_driver_root is not None:
            result["nvidiaDriverRoot"] = self.nvidia_driver_root
        if self.nvidia_dev_root is not None:
            result["nvidiaDevRoot"] = self.nvidia_dev_root
        result["gdsEnabled"] = self.gds_enabled
        result["mofedEnabled"] = self.mofed_enabled
        result["useNodeFeatureAPI"] = self.use_node_feature_api
        result["deviceDiscoveryStrategy"] = self.device_discovery_strategy
        if self.plugin is not None:
            result["plugin"] = self.plugin.to_obj()
        if self.gfd is not None:
            result["gfd"] = self.gfd.to_obj()
        return result

    def to_json(self) -> str:
        return json.dumps(self.to_obj())

    def update_from_cli_flags(self, ctx: CliContext, flag_names: FlagNames) -> None:
        """Update from CLI values for the given flags.

        Each entry of ``flag_names`` is a flag name or a sequence of a flag's
        name and its aliases. A value is taken if the flag was set explicitly or
        if the corresponding field has no value yet.
        """
        for entry in flag_names:
            names = [entry] if isinstance(entry, str) else list(entry)
            for name in names:
                _update_from_cli_flag(self, _COMMON_FLAGS, ctx, name)
                if self.plugin is None:
                    self.plugin = PluginCommandLineFlags()
                _update_from_cli_flag(self.plugin, _PLUGIN_FLAGS, ctx, name)
                if self.gfd is None:
                    self.gfd = GFDCommandLineFlags()
                _update_from_cli_flag(self.gfd, _GFD_FLAGS, ctx, name)