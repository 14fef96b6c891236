"""Options for replicating devices so that they can be shared."""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Any, Protocol

from gpushare.resources import ResourceName

_UINT = re.compile(r"[0-9]+")
_HEX_DIGITS = frozenset("0123456789abcdefABCDEF")
_UUID_HYPHENS = (8, 13, 18, 23)
_UINT64_LIMIT = 2**64


class WarningLogger(Protocol):
    """Anything that can emit a warning message, such as a logging.Logger."""

    def warning(self, msg: str, *args: Any) -> Any: ...


def _is_uint(text: str) -> bool:
    return bool(_UINT.fullmatch(text)) and int(text) < _UINT64_LIMIT


def _is_uuid(text: str) -> bool:
    """Accept the textual UUID forms: plain, braced, URN or 32 bare hex digits."""
    if len(text) == 32:
        return all(c in _HEX_DIGITS for c in text)
    if len(text) == 45:
        if text[:9].lower() != "urn:uuid:":
            return False
        text = text[9:]
    elif len(text) == 38:
        if text[0] != "{" or text[-1] != "}":
            return False
        text = text[1:-1]
    if len(text) != 36:
        return False
    if any(text[i] != "-" for i in _UUID_HYPHENS):
        return False
    return all(
        c in _HEX_DIGITS for i, c in enumerate(text) if i not in _UUID_HYPHENS
    )


class ReplicatedDeviceRef(str):
    """A reference to a device: a GPU index, a MIG index or a UUID."""

    def is_gpu_index(self) -> bool:
        return _is_uint(str(self))

    def is_mig_index(self) -> bool:
        parts = str(self).split(":", 1)
        if len(parts) != 2:
            return False
        return all(_is_uint(part) for part in parts)

    def is_uuid(self) -> bool:
        return self.is_gpu_uuid() or self.is_mig_uuid()

    def is_gpu_uuid(self) -> bool:
        """True for references of the form ``GPU-<uuid>``."""
        text = str(self)
        if not text.startswith("GPU-"):
            return False
        return _is_uuid(text[len("GPU-"):])

    def is_mig_uuid(self) -> bool:
        """True for ``MIG-<uuid>`` or ``MIG-GPU-<uuid>/<gi>/<ci>``."""
        text = str(self)
        if not text.startswith("MIG-"):
            return False
        suffix = text[len("MIG-"):]
        if _is_uuid(suffix):
            return True
        parts = suffix.split("/", 2)
        if len(parts) != 3:
            return False
        if not ReplicatedDeviceRef(parts[0]).is_gpu_uuid():
            return False
        return all(_is_uint(part) for part in parts[1:])


def _device_ref_from_obj(item: Any) -> ReplicatedDeviceRef:
    if isinstance(item, int) and not isinstance(item, bool):
        if 0 <= item < _UINT64_LIMIT:
            return ReplicatedDeviceRef(str(item))
    elif isinstance(item, str):
        ref = ReplicatedDeviceRef(item)
        if ref.is_gpu_index() or ref.is_mig_index() or ref.is_uuid():
            return ref
    raise ValueError(
        f"unsupported type for device in devices list: {item!r}, {type(item).__name__}"
    )


@dataclass
class ReplicatedDevices:
    """The devices to replicate: all of them, a count, or an explicit list.

    Only one of the fields is expected to be set at a time.
    """

    all_devices: bool = False
    count: int = 0
    refs: list[ReplicatedDeviceRef] | None = None

    @classmethod
    def from_obj(cls, obj: Any) -> ReplicatedDevices:
        if isinstance(obj, str):
            if obj != "all":
                raise ValueError(
                    f"devices set as '{obj}' but the only valid string input is 'all'"
                )
            return cls(all_devices=True)
        if isinstance(obj, int) and not isinstance(obj, bool):
            if obj <= 0:
                raise ValueError(
                    f"devices set as '{obj}' but a count of devices must be > 0"
                )
            return cls(count=obj)
        if isinstance(obj, list):
            return cls(refs=[_device_ref_from_obj(item) for item in obj])
        raise ValueError(f"unrecognized type for devices spec: {obj!r}")

    @classmethod
    def from_json(cls, text: str) -> ReplicatedDevices:
        return cls.from_obj(json.loads(text))

    def to_obj(self) -> Any:
        if self.all_devices:
            return "all"
        if self.count > 0:
            return self.count
        if self.refs is not None:
            return [str(ref) for ref in self.refs]
        raise ValueError(f"unmarshallable ReplicatedDevices struct: {self!r}")

    def to_json(self) -> str:
        return json.dumps(self.to_obj())


@dataclass
class ReplicatedResource:
    """A resource to replicate, the devices it covers and the replica count."""

    name: ResourceName
    devices: ReplicatedDevices = field(default_factory=ReplicatedDevices)
    replicas: int = 0
    rename: ResourceName = ResourceName("")

    @classmethod
    def from_obj(cls, obj: Any) -> ReplicatedResource:
        if not isinstance(obj, dict):
            raise ValueError(f"replicated resource must be a mapping, got {obj!r}")
        if "name" not in obj:
            raise ValueError("no resource name specified")
        name = ResourceName.from_obj(obj["name"])
        devices = ReplicatedDevices.from_obj(obj.get("devices", "all"))
        if "replicas" not in obj:
            raise ValueError("no replicas specified")
        replicas = obj["replicas"]
        if isinstance(replicas, bool) or not isinstance(replicas, int):
            raise ValueError(f"replicas must be an integer, got {replicas!r}")
        if replicas < 2:
            raise ValueError("number of replicas must be >= 2")
        rename = ResourceName("")
        if "rename" in obj:
            rename = ResourceName.from_obj(obj["rename"])
        return cls(name=name, devices=devices, replicas=replicas, rename=rename)

    @classmethod
    def from_json(cls, text: str) -> ReplicatedResource:
        return cls.from_obj(json.loads(text))

    def to_obj(self) -> dict[str, Any]:
        result: dict[str, Any] = {"name": str(self.name)}
        if self.rename:
            result["rename"] = str(self.rename)
        result["devices"] = self.devices.to_obj()
        result["replicas"] = self.replicas
        return result


def _optional_bool(obj: dict[str, Any], key: str) -> bool:
    value = obj.get(key, False)
    if not isinstance(value, bool):
        raise ValueError(f"{key} must be a boolean, got {value!r}")
    return value


@dataclass
class ReplicatedResources:
    """Generic options for replicating a set of resources."""

    rename_by_default: bool = False
    fail_requests_greater_than_one: bool = False
    resources: list[ReplicatedResource] = field(default_factory=list)

    @classmethod
    def from_obj(cls, obj: Any) -> ReplicatedResources:
        if not isinstance(obj, dict):
            raise ValueError(f"replicated resources must be a mapping, got {obj!r}")
        rename_by_default = _optional_bool(obj, "renameByDefault")
        fail_greater = _optional_bool(obj, "failRequestsGreaterThanOne")
        if "resources" not in obj:
            raise ValueError("no resources specified")
        items = obj["resources"]
        if items is None:
            items = []
        if not isinstance(items, list):
            raise ValueError(f"resources must be a list, got {items!r}")
        resources = [ReplicatedResource.from_obj(item) for item in items]
        if not resources:
            raise ValueError("no resources specified")
        if rename_by_default:
            for resource in resources:
                if not resource.rename:
                    resource.rename = resource.name.default_shared_rename()
        return cls(
            rename_by_default=rename_by_default,
            fail_requests_greater_than_one=fail_greater,
            resources=resources,
        )

    @classmethod
    def from_json(cls, text: str) -> ReplicatedResources:
        return cls.from_obj(json.loads(text))

    def to_obj(self) -> dict[str, Any]:
        result: dict[str, Any] = {}
        if self.rename_by_default:
            result["renameByDefault"] = True
        if self.fail_requests_greater_than_one:
            result["failRequestsGreaterThanOne"] = True
        if self.resources:
            result["resources"] = [r.to_obj() for r in self.resources]
        return result

    def is_replicated(self) -> bool:
        """True if any resource asks for more than one replica."""
        return any(r.replicas > 1 for r in self.resources)

    def disable_resource_renaming(self, logger: WarningLogger, ident: str) -> None:
        """Reset renames to their defaults and devices to 'all', warning on changes."""
        sets_non_default_rename = False
        sets_devices = False
        for resource in self.resources:
            original_rename = resource.rename
            original_all = resource.devices.all_devices
            if not self.rename_by_default and original_rename:
                sets_non_default_rename = True
                resource.rename = ResourceName("")
            default_rename = resource.name.default_shared_rename()
            if self.rename_by_default and original_rename != default_rename:
                sets_non_default_rename = True
                resource.rename = default_rename
            if not original_all:
                sets_devices = True
                resource.devices = ReplicatedDevices(all_devices=True)
        if sets_non_default_rename:
            logger.warning(
                f"Setting the 'rename' field in sharing.{ident}.resources is not yet "
                "supported in the config. Ignoring..."
            )
        if sets_devices:
            logger.warning(
                f"Customizing the 'devices' field in sharing.{ident}.resources is not "
                "yet supported in the config. Ignoring..."
            )