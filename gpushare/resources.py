"""Resource names, patterns and the lists of GPU and MIG resources."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any

from gpushare.consts import (
    DEFAULT_SHARED_RESOURCE_NAME_SUFFIX,
    MAX_RESOURCE_NAME_LENGTH,
    RESOURCE_NAME_PREFIX,
)

_DNS1123_LABEL = r"[a-z0-9]([-a-z0-9]*[a-z0-9])?"
_DNS1123_SUBDOMAIN = re.compile(rf"{_DNS1123_LABEL}(\.{_DNS1123_LABEL})*")
_DNS1123_SUBDOMAIN_MAX_LENGTH = 253


def _dns_subdomain_problems(name: str) -> list[str]:
    problems = []
    if len(name) > _DNS1123_SUBDOMAIN_MAX_LENGTH:
        problems.append(f"must be no more than {_DNS1123_SUBDOMAIN_MAX_LENGTH} characters")
    if not _DNS1123_SUBDOMAIN.fullmatch(name):
        problems.append(
            "a lowercase RFC 1123 subdomain must consist of lower case alphanumeric "
            "characters, '-' or '.', and must start and end with an alphanumeric character"
        )
    return problems


class ResourceName(str):
    """A fully-qualified Kubernetes extended resource name."""

    def split(self) -> tuple[str, str]:
        """Split into (prefix, name); the prefix is empty if there is no '/'."""
        parts = str(self).split("/", 1)
        if len(parts) != 2:
            return "", str(self)
        return parts[0], parts[1]

    def default_shared_rename(self) -> ResourceName:
        return ResourceName(str(self) + DEFAULT_SHARED_RESOURCE_NAME_SUFFIX)

    @classmethod
    def from_obj(cls, obj: Any) -> ResourceName:
        if not isinstance(obj, str):
            raise ValueError(f"resource name must be a string, got {obj!r}")
        return new_resource_name(obj)


def new_resource_name(name: str) -> ResourceName:
    """Build a resource name under the standard prefix, validating its format."""
    if not name.startswith(RESOURCE_NAME_PREFIX + "/"):
        name = f"{RESOURCE_NAME_PREFIX}/{name}"
    if len(name) > MAX_RESOURCE_NAME_LENGTH:
        raise ValueError(
            f"fully-qualified resource name must be {MAX_RESOURCE_NAME_LENGTH} "
            f"characters or less: {name}"
        )
    _, short = ResourceName(name).split()
    problems = _dns_subdomain_problems(short)
    if problems:
        raise ValueError(
            f"incorrect format for resource name '{name}': [{' '.join(problems)}]"
        )
    return ResourceName(name)


def _wildcard_to_regexp(pattern: str) -> str:
    return ".*".join(re.escape(literal) for literal in pattern.split("*"))


class ResourcePattern(str):
    """A wildcard pattern ('*' matches anything) used to select devices by name."""

    def matches(self, text: str) -> bool:
        return re.search(_wildcard_to_regexp(str(self)), text) is not None


@dataclass
class Resource:
    """A pattern paired with the resource name it maps to."""

    pattern: ResourcePattern
    name: ResourceName

    @classmethod
    def from_obj(cls, obj: Any) -> Resource:
        if not isinstance(obj, dict):
            raise ValueError(f"resource must be a mapping, got {obj!r}")
        if "pattern" not in obj:
            raise ValueError("resources must have a 'pattern' field set")
        if "name" not in obj:
            raise ValueError("resources must have a 'name' field set")
        pattern = obj["pattern"]
        if not isinstance(pattern, str):
            raise ValueError(f"resource pattern must be a string, got {pattern!r}")
        return cls(ResourcePattern(pattern), ResourceName.from_obj(obj["name"]))

    def to_obj(self) -> dict[str, str]:
        return {"pattern": str(self.pattern), "name": str(self.name)}


def new_resource(pattern: str, name: str) -> Resource:
    """Build a resource from a pattern and a (possibly unprefixed) name."""
    try:
        resource_name = new_resource_name(name)
    except ValueError as err:
        raise ValueError(f"invalid resource name: {err}") from err
    return Resource(ResourcePattern(pattern), resource_name)


def _resource_list(obj: Any, key: str) -> list[Resource]:
    if obj is None:
        return []
    if not isinstance(obj, list):
        raise ValueError(f"'{key}' must be a list, got {obj!r}")
    return [Resource.from_obj(item) for item in obj]


@dataclass
class Resources:
    """Full-GPU and MIG resources, listed separately."""

    gpus: list[Resource] = field(default_factory=list)
    migs: list[Resource] = field(default_factory=list)

    def add_gpu_resource(self, pattern: str, name: str) -> None:
        self.gpus.append(new_resource(pattern, name))

    def add_mig_resource(self, pattern: str, name: str) -> None:
        self.migs.append(new_resource(pattern, name))

    @classmethod
    def from_obj(cls, obj: Any) -> Resources:
        if obj is None:
            return cls()
        if not isinstance(obj, dict):
            raise ValueError(f"resources must be a mapping, got {obj!r}")
        return cls(
            gpus=_resource_list(obj.get("gpus"), "gpus"),
            migs=_resource_list(obj.get("mig"), "mig"),
        )

    def to_obj(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "gpus": [r.to_obj() for r in self.gpus] if self.gpus else None
        }
        if self.migs:
            result["mig"] = [r.to_obj() for r in self.migs]
        return result