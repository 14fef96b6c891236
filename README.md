# gpushare

`gpushare` holds the versioned configuration model used to share NVIDIA GPUs
on Kubernetes nodes, together with node-side helpers that act on it:

- loading and validating the `v1` configuration file (YAML or JSON), with
  command-line and environment values layered on top (`gpushare.config`,
  `gpushare.flags`);
- time-slicing and MPS sharing definitions: replicated resources, device
  references by index, MIG index or UUID, and resource naming rules
  (`gpushare.replicas`, `gpushare.sharing`, `gpushare.resources`);
- device list strategies (`envvar`, `volume-mounts`, `cdi-annotations`,
  `cdi-cri`) and IMEX channel settings (`gpushare.strategy`, `gpushare.imex`);
- MPS helpers: per-resource pipe and log directories, client limits per
  device, the `/dev/shm` tmpfs size and mount, and a tailer for a log file
  (`gpushare.mps_root`, `gpushare.mps_device`, `gpushare.shm`,
  `gpushare.log_tailer`);
- locating driver libraries under a driver root (`gpushare.driver_root`);
- a config manager that watches a node label and points a configuration
  symlink at the matching file, then signals the process that uses it
  (`gpushare.config_manager`).

## Installation

```
pip install gpushare
```

For running the tests:

```
pip install "gpushare[test]"
pytest
```

## Loading a configuration

```python
from gpushare.config import parse_config

config = parse_config("/etc/gpushare/config.yaml")
print(config.to_json())
```

A file without a `version` key is read as `v1`; any other version raises
`ValueError`, as does a file that cannot be opened or parsed.

`new_config(ctx, flag_names)` builds a configuration from a `CliContext`. If
the context has a `config-file` value, that file is parsed first; then each
flag in `flag_names` (a name, or a sequence of a name and its aliases) is
taken from the context if it was explicitly set or if the configuration has
no value for it yet. `imex-channel-ids` and `imex-required` are applied when
set. An empty `nvidiaDevRoot` takes the value of `nvidiaDriverRoot`, and an
MPS sharing section always gets `failRequestsGreaterThanOne` set.

```python
from gpushare.config import new_config
from gpushare.flags import CliContext

ctx = CliContext(
    values={"mig-strategy": "single", "fail-on-init-error": True},
    explicitly_set=frozenset({"mig-strategy"}),
)
config = new_config(ctx, ["mig-strategy", "fail-on-init-error"])
config.flags.mig_strategy          # "single"
```

`disable_resource_naming_in_config(logger, config)` clears custom resources,
resets renames to their defaults and device selections to `"all"`, warning
through the given logger (anything with a `warning` method) when it drops
anything.

## Sharing definitions

```python
from gpushare.replicas import ReplicatedDeviceRef, ReplicatedResources

ReplicatedDeviceRef("0").is_gpu_index()          # True
ReplicatedDeviceRef("0:0").is_mig_index()        # True
ReplicatedDeviceRef(
    "MIG-GPU-00000000-0000-0000-0000-000000000000/1/0"
).is_uuid()                                      # True

resources = ReplicatedResources.from_json(
    '{"resources": [{"name": "gpu", "replicas": 4}]}'
)
resources.is_replicated()                        # True
```

A replicated resource needs a `name` and at least two `replicas`; `devices`
defaults to `"all"` and may also be a positive count or a list of device
references. With `renameByDefault`, resources without a `rename` are renamed
to `<name>.shared`. Resource names are qualified with the `nvidia.com/`
prefix, must fit in 63 characters, and the part after the prefix must be a
lowercase DNS subdomain.

`Sharing.sharing_strategy()` returns `SharingStrategy.MPS`,
`SharingStrategy.TIME_SLICING` or `SharingStrategy.NONE`.

`ResourcePattern("*A100*").matches("NVIDIA A100-SXM4-40GB")` matches names
with `*` as a wildcard.

## Device list strategies and IMEX

```python
from gpushare.strategy import new_device_list_strategies

strategies = new_device_list_strategies(["envvar", "cdi-annotations"])
strategies.includes("envvar")     # True
strategies.any_cdi_enabled()      # True
strategies.all_cdi_enabled()      # False
```

An unknown strategy name raises `ValueError`.

`assert_channel_ids_valid(ids)` accepts only no channel IDs or `[0]` and
raises `InvalidImexConfigError` otherwise.

## Durations

```python
from gpushare.duration import Duration, parse_duration, format_duration

parse_duration("1m30s")           # 90000000000 nanoseconds
format_duration(5)                # "5ns"
str(Duration.from_obj("5s"))      # "5s"
```

In configuration files `sleepInterval` may be a duration string such as
`"60s"` or a number of nanoseconds; it is written back as a string.

## MPS helpers

```python
from gpushare.mps_root import MpsRoot
from gpushare.mps_device import MpsDevice

root = MpsRoot("/mps")
root.pipe_dir("nvidia.com/gpu")   # "/mps/nvidia.com/gpu/pipe"
root.log_dir("nvidia.com/gpu")    # "/mps/nvidia.com/gpu/log"

MpsDevice(compute_capability="8.0", replicas=4).max_clients()   # 48
```

`MpsDevice.max_clients()` is 48 for compute capability 7.5 and newer and 16
before that; `assert_replicas()` raises `InvalidDeviceError` when a device is
given more replicas than that.

`default_shm_size()` reads `/proc/meminfo` and returns half of the total
memory with its unit (falling back to `65536k`); `mount_shm()` unmounts and
removes any existing `/mps/shm`, recreates it and mounts a tmpfs of that size
using the `mount` command. It needs the privileges to mount.

`LogTailer(filename)` runs `tail -n +1 -f` on a file; `stop()` kills it and
returns its exit status.

## Driver root

```python
from gpushare.driver_root import DriverRoot

root = DriverRoot("/run/nvidia/driver")
root.dev_root()                                  # the root if it has /dev, else "/"
root.try_resolve_library("libnvidia-ml.so.1")    # resolved path, or the bare name
```

## Config manager

The `gpushare-config-manager` command watches a node's label and selects a
configuration file from a directory by its value:

```
gpushare-config-manager \
    --node-name worker-1 \
    --config-file-srcdir /available-configs \
    --config-file-dst /config/config.yaml \
    --fallback-strategies named,single
```

Each option can also be given by environment variable (`NODE_NAME`,
`NODE_LABEL`, `CONFIG_FILE_SRCDIR`, `CONFIG_FILE_DST`, `DEFAULT_CONFIG`,
`FALLBACK_STRATEGIES`, `ONESHOT`, `SEND_SIGNAL`, `SIGNAL`,
`PROCESS_TO_SIGNAL`, `KUBECONFIG`). The label defaults to
`nvidia.com/device-plugin.config`. The Kubernetes API is reached through the
kubeconfig file given, or else through the in-cluster service account.

Files whose names start with `..` and directories in the source directory
are ignored. When the label is unset, the `--default-config` file is used if
given; otherwise the fallback strategies are tried in order:

- `named`: use a file called `default`;
- `single`: use the only file present;
- `empty`: link the destination to `/dev/null`.

If the destination already resolves to the chosen file nothing is changed.
After the link changes, the manager sends `SIGHUP` (or `--signal`) to the
first process whose command name equals `--process-to-signal`, unless
`--send-signal=false` is given. With `--oneshot` it applies the current
label once and exits. The command exits with status 1 on any error.

## What this package does not do

`gpushare` does not serve devices to the kubelet, discover GPUs, generate
node feature labels, or start and stop MPS control daemons. It provides the
configuration those components read and the helpers listed above; the
only command it installs is `gpushare-config-manager`.