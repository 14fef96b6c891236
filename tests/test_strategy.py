import pytest

from gpushare.consts import (
    DEVICE_LIST_STRATEGY_CDI_ANNOTATIONS,
    DEVICE_LIST_STRATEGY_CDI_CRI,
    DEVICE_LIST_STRATEGY_ENVVAR,
    DEVICE_LIST_STRATEGY_VOLUME_MOUNTS,
)
from gpushare.strategy import new_device_list_strategies


def test_envvar_only():
    strategies = new_device_list_strategies([DEVICE_LIST_STRATEGY_ENVVAR])
    assert strategies.includes(DEVICE_LIST_STRATEGY_ENVVAR)
    assert not strategies.includes(DEVICE_LIST_STRATEGY_VOLUME_MOUNTS)
    assert not strategies.any_cdi_enabled()
    assert not strategies.all_cdi_enabled()


def test_cdi_only():
    strategies = new_device_list_strategies(
        [DEVICE_LIST_STRATEGY_CDI_ANNOTATIONS, DEVICE_LIST_STRATEGY_CDI_CRI]
    )
    assert strategies.any_cdi_enabled()
    assert strategies.all_cdi_enabled()


def test_mixed_strategies():
    strategies = new_device_list_strategies(
        [DEVICE_LIST_STRATEGY_ENVVAR, DEVICE_LIST_STRATEGY_CDI_ANNOTATIONS]
    )
    assert strategies.any_cdi_enabled()
    assert not strategies.all_cdi_enabled()


def test_no_strategies():
    strategies = new_device_list_strategies([])
    assert not strategies.any_cdi_enabled()
    assert strategies.all_cdi_enabled()
    assert not any(strategies.values())


def test_all_known_strategies_are_keys():
    strategies = new_device_list_strategies([DEVICE_LIST_STRATEGY_VOLUME_MOUNTS])
    assert set(strategies) == {
        DEVICE_LIST_STRATEGY_ENVVAR,
        DEVICE_LIST_STRATEGY_VOLUME_MOUNTS,
        DEVICE_LIST_STRATEGY_CDI_ANNOTATIONS,
        DEVICE_LIST_STRATEGY_CDI_CRI,
    }
    assert strategies[DEVICE_LIST_STRATEGY_VOLUME_MOUNTS] is True
    assert strategies[DEVICE_LIST_STRATEGY_ENVVAR] is False


def test_unknown_strategy_not_included():
    strategies = new_device_list_strategies([DEVICE_LIST_STRATEGY_ENVVAR])
    assert strategies.includes("unknown") is False


def test_duplicates_are_accepted():
    strategies = new_device_list_strategies(
        [DEVICE_LIST_STRATEGY_ENVVAR, DEVICE_LIST_STRATEGY_ENVVAR]
    )
    assert sum(strategies.values()) == 1


def test_invalid_strategy():
    with pytest.raises(ValueError, match="invalid strategy"):
        new_device_list_strategies([DEVICE_LIST_STRATEGY_ENVVAR, "bogus"])