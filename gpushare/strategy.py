"""Strategies for passing the device list to the container runtime."""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping

from gpushare.consts import (
    DEVICE_LIST_STRATEGY_CDI_ANNOTATIONS,
    DEVICE_LIST_STRATEGY_CDI_CRI,
    DEVICE_LIST_STRATEGY_ENVVAR,
    DEVICE_LIST_STRATEGY_VOLUME_MOUNTS,
)

_KNOWN_STRATEGIES = (
    DEVICE_LIST_STRATEGY_ENVVAR,
    DEVICE_LIST_STRATEGY_VOLUME_MOUNTS,
    DEVICE_LIST_STRATEGY_CDI_ANNOTATIONS,
    DEVICE_LIST_STRATEGY_CDI_CRI,
)


class DeviceListStrategies(Mapping[str, bool]):
    """Which device list strategies are enabled, keyed by strategy name."""

    def __init__(self, states: Mapping[str, bool]) -> None:
        self._states = dict(states)

    def __getitem__(self, key: str) -> bool:
        return self._states[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._states)

    def __len__(self) -> int:
        return len(self._states)

    def __repr__(self) -> str:
        return f"DeviceListStrategies({self._states!r})"

    def includes(self, strategy: str) -> bool:
        return self._states.get(strategy, False)

    def any_cdi_enabled(self) -> bool:
        return any(k.startswith("cdi-") and v for k, v in self._states.items())

    def all_cdi_enabled(self) -> bool:
        return not any(not k.startswith("cdi-") and v for k, v in self._states.items())


def new_device_list_strategies(strategies: Iterable[str]) -> DeviceListStrategies:
    """Enable the named strategies; raise ValueError for an unknown one."""
    states = dict.fromkeys(_KNOWN_STRATEGIES, False)
    for strategy in strategies:
        if strategy not in states:
            raise ValueError(f"invalid strategy: {strategy}")
        states[strategy] = True
    return DeviceListStrategies(states)