"""Keep a device configuration symlink in step with a label on a Kubernetes node.

The manager watches one node's label. When the label changes, it points the
destination config file at the named file in the source directory. It can then
signal a process so that the process reloads its configuration.
"""

from __future__ import annotations

import argparse
import base64
import json
import logging
import os
import signal as signal_module
import tempfile
import threading
from collections.abc import Iterator, Sequence
from dataclasses import dataclass, field
from typing import Any, Optional, Protocol

import psutil
import requests
import yaml

logger = logging.getLogger(__name__)

RESOURCE_NODES = "nodes"

DEFAULT_ONESHOT = False
DEFAULT_SEND_SIGNAL = True
DEFAULT_SIGNAL = int(signal_module.SIGHUP)
DEFAULT_PROCESS_TO_SIGNAL = "nvidia-device-plugin"
DEFAULT_CONFIG_LABEL = "nvidia.com/device-plugin.config"

FALLBACK_STRATEGY_NAMED_CONFIG = "named"
FALLBACK_STRATEGY_SINGLE_CONFIG = "single"
FALLBACK_STRATEGY_EMPTY_CONFIG = "empty"

NAMED_CONFIG_FALLBACK = "default"

_EMPTY_CONFIG_TARGET = "/dev/null"
_SERVICE_ACCOUNT_DIR = "/var/run/secrets/kubernetes.io/serviceaccount"
_WATCH_TIMEOUT_SECONDS = 300
_RETRY_SECONDS = 1.0

_TRUE_WORDS = frozenset({"1", "t", "true", "yes", "y", "on"})
_FALSE_WORDS = frozenset({"0", "f", "false", "no", "n", "off"})


@dataclass
class ManagerFlags:
    """Settings given on the command line or through the environment."""

    oneshot: bool = DEFAULT_ONESHOT
    kubeconfig: str = ""
    node_name: str = ""
    node_label: str = DEFAULT_CONFIG_LABEL
    config_file_srcdir: str = ""
    config_file_dst: str = ""
    default_config: str = ""
    fallback_strategies: list[str] = field(default_factory=list)
    send_signal: bool = DEFAULT_SEND_SIGNAL
    signal: int = DEFAULT_SIGNAL
    process_to_signal: str = DEFAULT_PROCESS_TO_SIGNAL


class SyncableConfig:
    """A value that readers block on until it is next set.

    A call to get() blocks until set() is called, unless a set() happened since
    the last read. Several set() calls do not queue: only readers already
    waiting are woken.
    """

    def __init__(self) -> None:
        self._cond = threading.Condition()
        self._current = ""
        self._last_read = ""

    def set(self, value: str) -> None:
        with self._cond:
            self._current = value
            self._cond.notify_all()

    def get(self) -> str:
        with self._cond:
            if self._last_read == self._current:
                self._cond.wait()
            self._last_read = self._current
            return self._last_read


class NodeApi(Protocol):
    """The part of the Kubernetes API that the watcher needs."""

    def list_nodes(self, field_selector: str) -> tuple[list[dict[str, Any]], str]: ...

    def watch_nodes(
        self, field_selector: str, resource_version: str, stop: threading.Event
    ) -> Iterator[tuple[str, dict[str, Any]]]: ...


def _node_name(node: dict[str, Any]) -> str:
    return (node.get("metadata") or {}).get("name", "")


def _node_label(node: dict[str, Any], label: str) -> str:
    labels = (node.get("metadata") or {}).get("labels") or {}
    return labels.get(label, "") or ""


class NodeLabelWatcher:
    """Watches one node and pushes changes of its config label into a SyncableConfig."""

    def __init__(self, config: SyncableConfig, flags: ManagerFlags, api: NodeApi) -> None:
        self._config = config
        self._flags = flags
        self._api = api
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._nodes: dict[str, dict[str, Any]] = {}

    def start(self) -> None:
        """Start watching in a background thread."""
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="node-label-watcher", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        """Ask the watcher to stop and wait briefly for it to finish."""
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=5.0)
            self._thread = None

    def _run(self) -> None:
        selector = f"metadata.name={self._flags.node_name}"
        while not self._stop.is_set():
            try:
                items, resource_version = self._api.list_nodes(selector)
                self._replace(items)
                for kind, node in self._api.watch_nodes(selector, resource_version, self._stop):
                    if self._stop.is_set():
                        return
                    if kind == "ERROR":
                        break
                    if kind in ("ADDED", "MODIFIED"):
                        self._upsert(node)
                    elif kind == "DELETED":
                        self._delete(node)
            except (requests.RequestException, OSError, ValueError) as err:
                logger.error("error watching node %s: %s", self._flags.node_name, err)
                self._stop.wait(_RETRY_SECONDS)

    def _replace(self, items: list[dict[str, Any]]) -> None:
        seen = set()
        for node in items:
            seen.add(_node_name(node))
            self._upsert(node)
        for name in list(self._nodes):
            if name not in seen:
                self._delete(self._nodes[name])

    def _upsert(self, node: dict[str, Any]) -> None:
        name = _node_name(node)
        label = self._flags.node_label
        old = self._nodes.get(name)
        self._nodes[name] = node
        if old is None:
            self._config.set(_node_label(node, label))
            return
        new_value = _node_label(node, label)
        if _node_label(old, label) != new_value:
            self._config.set(new_value)

    def _delete(self, node: dict[str, Any]) -> None:
        old = self._nodes.pop(_node_name(node), node)
        if _node_label(old, self._flags.node_label) != "":
            self._config.set("")


class _KubeClient:
    """A minimal client for listing and watching nodes over the REST API."""

    def __init__(self, server: str, session: requests.Session, temp_files: list[str]) -> None:
        self._server = server.rstrip("/")
        self._session = session
        self._temp_files = temp_files

    def close(self) -> None:
        self._session.close()
        for path in self._temp_files:
            try:
                os.remove(path)
            except OSError:
                pass

    def list_nodes(self, field_selector: str) -> tuple[list[dict[str, Any]], str]:
        resp = self._session.get(
            f"{self._server}/api/v1/{RESOURCE_NODES}",
            params={"fieldSelector": field_selector},
            timeout=30,
        )
        resp.raise_for_status()
        body = resp.json()
        items = body.get("items") or []
        resource_version = (body.get("metadata") or {}).get("resourceVersion", "")
        return items, resource_version

    def watch_nodes(
        self, field_selector: str, resource_version: str, stop: threading.Event
    ) -> Iterator[tuple[str, dict[str, Any]]]:
        params = {
            "fieldSelector": field_selector,
            "watch": "true",
            "resourceVersion": resource_version,
            "timeoutSeconds": str(_WATCH_TIMEOUT_SECONDS),
        }
        with self._session.get(
            f"{self._server}/api/v1/{RESOURCE_NODES}",
            params=params,
            stream=True,
            timeout=(30, _WATCH_TIMEOUT_SECONDS + 30),
        ) as resp:
            resp.raise_for_status()
            for line in resp.iter_lines():
                if stop.is_set():
                    return
                if not line:
                    continue
                event = json.loads(line)
                yield event.get("type", ""), event.get("object") or {}


def _data_file(data: str, temp_files: list[str]) -> str:
    handle = tempfile.NamedTemporaryFile(delete=False, suffix=".pem")
    with handle:
        handle.write(base64.b64decode(data))
    temp_files.append(handle.name)
    return handle.name


def _in_cluster_client() -> _KubeClient:
    host = os.environ.get("KUBERNETES_SERVICE_HOST", "")
    port = os.environ.get("KUBERNETES_SERVICE_PORT", "")
    if not host or not port:
        raise ValueError(
            "unable to load in-cluster configuration, KUBERNETES_SERVICE_HOST and "
            "KUBERNETES_SERVICE_PORT must be defined"
        )
    if ":" in host:
        host = f"[{host}]"
    with open(os.path.join(_SERVICE_ACCOUNT_DIR, "token"), encoding="utf-8") as handle:
        bearer = handle.read().strip()
    session = requests.Session()
    session.headers["Authorization"] = f"Bearer {bearer}"
    session.verify = os.path.join(_SERVICE_ACCOUNT_DIR, "ca.crt")
    return _KubeClient(f"https://{host}:{port}", session, [])


def _named_entry(entries: Any, name: str, kind: str) -> dict[str, Any]:
    for entry in entries or []:
        if entry.get("name") == name:
            return entry.get(kind) or {}
    raise ValueError(f"{kind} {name!r} not found in kubeconfig")


def _kubeconfig_client(path: str) -> _KubeClient:
    with open(path, encoding="utf-8") as handle:
        doc = yaml.safe_load(handle) or {}
    context_name = doc.get("current-context", "")
    if not context_name:
        raise ValueError("kubeconfig has no current-context")
    context = _named_entry(doc.get("contexts"), context_name, "context")
    cluster = _named_entry(doc.get("clusters"), context.get("cluster", ""), "cluster")
    user = _named_entry(doc.get("users"), context.get("user", ""), "user") if context.get("user") else {}

    server = cluster.get("server", "")
    if not server:
        raise ValueError("no server found for cluster in kubeconfig")

    temp_files: list[str] = []
    session = requests.Session()
    if cluster.get("insecure-skip-tls-verify"):
        session.verify = False
    elif cluster.get("certificate-authority-data"):
        session.verify = _data_file(cluster["certificate-authority-data"], temp_files)
    elif cluster.get("certificate-authority"):
        session.verify = cluster["certificate-authority"]

    cert = user.get("client-certificate")
    if user.get("client-certificate-data"):
        cert = _data_file(user["client-certificate-data"], temp_files)
    key = user.get("client-key")
    if user.get("client-key-data"):
        key = _data_file(user["client-key-data"], temp_files)
    if cert and key:
        session.cert = (cert, key)

    if user.get("token"):
        session.headers["Authorization"] = f"Bearer {user['token']}"
    elif user.get("tokenFile"):
        with open(user["tokenFile"], encoding="utf-8") as handle:
            session.headers["Authorization"] = f"Bearer {handle.read().strip()}"
    elif user.get("username"):
        session.auth = (user["username"], user.get("password", ""))
    return _KubeClient(server, session, temp_files)


def _build_client(kubeconfig: str) -> _KubeClient:
    try:
        if kubeconfig:
            return _kubeconfig_client(kubeconfig)
        return _in_cluster_client()
    except (OSError, ValueError, yaml.YAMLError, AttributeError) as err:
        raise RuntimeError(f"error building kubernetes clientcmd config: {err}") from err


def validate_flags(flags: ManagerFlags) -> None:
    """Raise ValueError if a required setting is empty."""
    if flags.node_name == "":
        raise ValueError("invalid <node-name>: must not be empty string")
    if flags.node_label == "":
        raise ValueError("invalid <node-label>: must not be empty string")
    if flags.config_file_srcdir == "":
        raise ValueError("invalid <config-file-srcdir>: must not be empty string")
    if flags.config_file_dst == "":
        raise ValueError("invalid <config-file-dst>: must not be empty string")


def update_config(config: str, flags: ManagerFlags) -> None:
    """Select the config, point the destination at it and signal if it changed."""
    config = update_config_name(config, flags)

    if config == "":
        logger.info("Updating to empty config")
    else:
        logger.info("Updating to config: %s", config)

    if not update_symlink(config, flags):
        logger.info("Already configured. Skipping update...")
        return

    if config == "":
        logger.info("Successfully updated to empty config")
    else:
        logger.info("Successfully updated to config: %s", config)

    if flags.send_signal:
        try:
            signal_name = signal_module.Signals(flags.signal).name
        except ValueError:
            signal_name = str(flags.signal)
        logger.info("Sending signal '%s' to '%s'", signal_name, flags.process_to_signal)
        signal_process(flags)
        logger.info("Successfully sent signal")


def update_config_name(config: str, flags: ManagerFlags) -> str:
    """Return the config name to use, applying the default and fallbacks.

    An empty result stands for the empty configuration. Raises ValueError if no
    config can be chosen.
    """
    try:
        files = get_config_file_name_map(flags)
    except OSError as err:
        raise ValueError(f"error getting list of configuration files: {err}") from err
    if not files:
        raise ValueError("no configuration files available")

    filenames = sorted(files)

    if config != "":
        if config not in files:
            raise ValueError(f"specified config {config} does not exist")
        return config

    if flags.default_config != "":
        logger.info("No value set. Selecting default name: %s", flags.default_config)
        if flags.default_config not in files:
            raise ValueError(f"specified config {flags.default_config} does not exist")
        return flags.default_config

    logger.info(
        "No value set and no default set. Attempting fallback strategies: %s",
        flags.fallback_strategies,
    )
    for fallback in flags.fallback_strategies:
        if fallback == FALLBACK_STRATEGY_NAMED_CONFIG:
            logger.info("Attempting to find config named: %s", NAMED_CONFIG_FALLBACK)
            if NAMED_CONFIG_FALLBACK in files:
                return NAMED_CONFIG_FALLBACK
            logger.info("No configuration named '%s' was found", NAMED_CONFIG_FALLBACK)
        elif fallback == FALLBACK_STRATEGY_SINGLE_CONFIG:
            logger.info("Attempting to see if only a single config is available...")
            if len(filenames) == 1:
                return filenames[0]
            logger.info("More than one configuration was found: %s", filenames)
        elif fallback == FALLBACK_STRATEGY_EMPTY_CONFIG:
            logger.info("Falling back to an empty configuration")
            return ""
        else:
            raise ValueError(f"unknown fallback strategy: {fallback}")

    raise ValueError("no config was set, no default was provided, and all fallbacks failed")


def update_symlink(config: str, flags: ManagerFlags) -> bool:
    """Point the destination at the config; return False if it already did."""
    src = os.path.join(flags.config_file_srcdir, config) if config else _EMPTY_CONFIG_TARGET
    dst = flags.config_file_dst

    try:
        exists = file_exists(dst)
    except OSError as err:
        raise RuntimeError(f"error checking if file '{dst}' exists: {err}") from err

    if exists:
        try:
            src_realpath = os.path.realpath(src, strict=True)
        except OSError as err:
            raise RuntimeError(f"error evaluating realpath of '{src}': {err}") from err
        try:
            dst_realpath = os.path.realpath(dst, strict=True)
        except OSError as err:
            raise RuntimeError(f"error evaluating realpath of '{dst}': {err}") from err
        if src_realpath == dst_realpath:
            return False
        try:
            os.remove(dst)
        except OSError as err:
            raise RuntimeError(f"error removing existing config: {err}") from err

    try:
        os.symlink(src, dst)
    except OSError as err:
        raise RuntimeError(f"error creating symlink: {err}") from err
    return True


def signal_process(flags: ManagerFlags) -> None:
    """Send the configured signal to the configured process."""
    try:
        pid = find_pid_to_signal(flags)
    except RuntimeError as err:
        raise RuntimeError(f"error finding pid: {err}") from err
    try:
        os.kill(pid, flags.signal)
    except OSError as err:
        raise RuntimeError(f"error sending signal: {err}") from err


def find_pid_to_signal(flags: ManagerFlags) -> int:
    """The pid of the first process whose argv[0] is the process to signal."""
    try:
        processes = sorted(psutil.process_iter(), key=lambda p: p.pid)
    except (psutil.Error, OSError) as err:
        raise RuntimeError(f"error getting list of all procs: {err}") from err
    for process in processes:
        try:
            cmdline = process.cmdline()
        except (psutil.NoSuchProcess, psutil.ZombieProcess):
            continue
        except (psutil.Error, OSError) as err:
            raise RuntimeError(f"error getting cmdline: {err}") from err
        if cmdline and cmdline[0] == flags.process_to_signal:
            return process.pid
    raise RuntimeError("no process found")


def file_exists(filename: str) -> bool:
    """True if the path (following symlinks) exists and is not a directory."""
    try:
        info = os.stat(filename)
    except FileNotFoundError:
        return False
    return not os.path.isdir(filename) and info is not None


def get_config_file_name_map(flags: ManagerFlags) -> set[str]:
    """Names of the config files in the source directory.

    Directories and the '..'-prefixed entries of mounted ConfigMaps are left out.
    """
    try:
        entries = list(os.scandir(flags.config_file_srcdir))
    except OSError as err:
        raise OSError(f"error reading directory: {err}") from err
    return {
        entry.name
        for entry in entries
        if not entry.is_dir() and not entry.name.startswith("..")
    }


def _parse_bool(text: str) -> bool:
    word = str(text).strip().lower()
    if word in _TRUE_WORDS:
        return True
    if word in _FALSE_WORDS:
        return False
    raise argparse.ArgumentTypeError(f"invalid boolean value: {text!r}")


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    return default if value is None else _parse_bool(value)


def _split_list(values: Sequence[str]) -> list[str]:
    return [item for value in values for item in value.split(",") if item]


def _parse_args(argv: Optional[Sequence[str]]) -> ManagerFlags:
    env = os.environ.get
    parser = argparse.ArgumentParser(
        prog="config-manager",
        description="Update the device configuration when a node label changes.",
    )
    parser.add_argument(
        "--oneshot", nargs="?", const=True, type=_parse_bool,
        default=_env_bool("ONESHOT", DEFAULT_ONESHOT),
        help="check and update the config only once and then exit",
    )
    parser.add_argument(
        "--kubeconfig", default=env("KUBECONFIG", ""),
        help="absolute path to the kubeconfig file",
    )
    parser.add_argument(
        "--node-name", default=env("NODE_NAME", ""),
        help="the name of the node to watch for label changes on",
    )
    parser.add_argument(
        "--node-label", default=env("NODE_LABEL", DEFAULT_CONFIG_LABEL),
        help="the name of the node label to use for selecting a config",
    )
    parser.add_argument(
        "--config-file-srcdir", default=env("CONFIG_FILE_SRCDIR", ""),
        help="the path to the directory containing available device configuration files",
    )
    parser.add_argument(
        "--config-file-dst", default=env("CONFIG_FILE_DST", ""),
        help="the path to destination device configuration file",
    )
    parser.add_argument(
        "--default-config", default=env("DEFAULT_CONFIG", ""),
        help="the default config to use if no label is set",
    )
    parser.add_argument(
        "--fallback-strategies", action="append", default=None,
        help="ordered list of fallback strategies to use to set a default config when none is provided",
    )
    parser.add_argument(
        "--send-signal", nargs="?", const=True, type=_parse_bool,
        default=_env_bool("SEND_SIGNAL", DEFAULT_SEND_SIGNAL),
        help="send a signal to <process-to-signal> once a config change is made",
    )
    parser.add_argument(
        "--signal", type=int, default=int(env("SIGNAL", str(DEFAULT_SIGNAL))),
        help="the signal to send to <process-to-signal> if <send-signal> is set",
    )
    parser.add_argument(
        "--process-to-signal", default=env("PROCESS_TO_SIGNAL", DEFAULT_PROCESS_TO_SIGNAL),
        help="the name of the process to signal if <send-signal> is set",
    )
    args = parser.parse_args(argv)

    if args.fallback_strategies is None:
        fallbacks = _split_list([env("FALLBACK_STRATEGIES", "")])
    else:
        fallbacks = _split_list(args.fallback_strategies)

    return ManagerFlags(
        oneshot=args.oneshot,
        kubeconfig=args.kubeconfig,
        node_name=args.node_name,
        node_label=args.node_label,
        config_file_srcdir=args.config_file_srcdir,
        config_file_dst=args.config_file_dst,
        default_config=args.default_config,
        fallback_strategies=fallbacks,
        send_signal=args.send_signal,
        signal=args.signal,
        process_to_signal=args.process_to_signal,
    )


def _run(flags: ManagerFlags) -> None:
    client = _build_client(flags.kubeconfig)
    config = SyncableConfig()
    watcher = NodeLabelWatcher(config, flags, client)
    watcher.start()
    try:
        while True:
            logger.info("Waiting for change to '%s' label", flags.node_label)
            value = config.get()
            logger.info("Label change detected: %s=%s", flags.node_label, value)
            update_config(value, flags)
            if flags.oneshot:
                return
    finally:
        watcher.stop()
        client.close()


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Run the config manager; return the process exit status."""
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")
    flags = _parse_args(argv)
    try:
        validate_flags(flags)
        _run(flags)
    except (ValueError, RuntimeError, OSError) as err:
        logger.error("%s", err)
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())