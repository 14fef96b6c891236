import contextlib

import pytest

from gpushare.mps_device import InvalidDeviceError, MpsDevice


@pytest.mark.parametrize(
    "device, expected_volta, expected_max, expected_error",
    [
        (MpsDevice(compute_capability="v7.5"), True, 48, None),
        (MpsDevice(compute_capability="7.5"), True, 48, None),
        (MpsDevice(compute_capability="7.0"), False, 16, None),
        (MpsDevice(compute_capability="9.0"), True, 48, None),
        (MpsDevice(compute_capability="7.0", replicas=29), False, 16, InvalidDeviceError),
        (MpsDevice(compute_capability="9.0", replicas=49), True, 48, InvalidDeviceError),
        (MpsDevice(compute_capability="7.0", replicas=16), False, 16, None),
        (MpsDevice(compute_capability="9.0", replicas=48), True, 48, None),
    ],
    ids=[
        "leading v ignored",
        "no-leading v supported",
        "pre-volta clients",
        "post-volta clients",
        "pre-volta clients exceeded",
        "post-volta clients exceeded",
        "pre-volta clients max",
        "post-volta clients max",
    ],
)
def test_device(device, expected_volta, expected_max, expected_error):
    assert device.is_at_least_volta() is expected_volta
    assert device.max_clients() == expected_max
    context = (
        pytest.raises(expected_error) if expected_error else contextlib.nullcontext()
    )
    with context:
        device.assert_replicas()


def test_invalid_compute_capability_is_pre_volta():
    device = MpsDevice(compute_capability="not-a-version")
    assert device.is_at_least_volta() is False
    assert device.max_clients() == 16


def test_error_is_value_error_with_counts():
    with pytest.raises(ValueError, match="49 > 48"):
        MpsDevice(compute_capability="9.0", replicas=49).assert_replicas()