import os
import threading

import psutil
import pytest

from gpushare.config_manager import (
    DEFAULT_CONFIG_LABEL,
    NAMED_CONFIG_FALLBACK,
    ManagerFlags,
    NodeLabelWatcher,
    SyncableConfig,
    file_exists,
    find_pid_to_signal,
    get_config_file_name_map,
    main,
    signal_process,
    update_config,
    update_config_name,
    update_symlink,
    validate_flags,
)

LABEL = DEFAULT_CONFIG_LABEL


def _get_with_timeout(config, timeout=5.0):
    result = {}

    def reader():
        result["value"] = config.get()

    thread = threading.Thread(target=reader, daemon=True)
    thread.start()
    thread.join(timeout)
    assert not thread.is_alive(), "get() did not return"
    return result["value"]


@pytest.fixture
def srcdir(tmp_path):
    src = tmp_path / "configs"
    src.mkdir()
    return src


def _flags(tmp_path, srcdir, **kwargs):
    base = dict(
        node_name="node",
        config_file_srcdir=str(srcdir),
        config_file_dst=str(tmp_path / "config.yaml"),
        send_signal=False,
    )
    base.update(kwargs)
    return ManagerFlags(**base)


def _node(name, value=None):
    labels = {} if value is None else {LABEL: value}
    return {"metadata": {"name": name, "labels": labels}}


# SyncableConfig


def test_get_returns_value_set_before():
    config = SyncableConfig()
    config.set("a")
    assert _get_with_timeout(config) == "a"


def test_get_blocks_until_next_set():
    config = SyncableConfig()
    config.set("a")
    assert _get_with_timeout(config) == "a"

    result = {}
    started = threading.Event()

    def reader():
        started.set()
        result["value"] = config.get()

    thread = threading.Thread(target=reader, daemon=True)
    thread.start()
    started.wait(5)
    thread.join(0.2)
    assert thread.is_alive()
    config.set("b")
    thread.join(5)
    assert result["value"] == "b"


def test_same_value_set_again_wakes_reader():
    config = SyncableConfig()
    config.set("a")
    assert _get_with_timeout(config) == "a"
    timer = threading.Timer(0.1, config.set, args=("a",))
    timer.start()
    assert _get_with_timeout(config) == "a"


# validate_flags


@pytest.mark.parametrize(
    "field_name, message",
    [
        ("node_name", "invalid <node-name>: must not be empty string"),
        ("node_label", "invalid <node-label>: must not be empty string"),
        ("config_file_srcdir", "invalid <config-file-srcdir>: must not be empty string"),
        ("config_file_dst", "invalid <config-file-dst>: must not be empty string"),
    ],
)
def test_validate_flags_rejects_empty(tmp_path, srcdir, field_name, message):
    flags = _flags(tmp_path, srcdir, **{field_name: ""})
    with pytest.raises(ValueError) as excinfo:
        validate_flags(flags)
    assert str(excinfo.value) == message


def test_validate_flags_accepts_complete(tmp_path, srcdir):
    flags = _flags(tmp_path, srcdir)
    assert validate_flags(flags) is None


# file_exists and the config file map


def test_file_exists(tmp_path):
    path = tmp_path / "file"
    assert file_exists(str(path)) is False
    path.write_text("x")
    assert file_exists(str(path)) is True
    assert file_exists(str(tmp_path)) is False


def test_config_file_map_excludes_dirs_and_dotdot(tmp_path, srcdir):
    (srcdir / "a").write_text("a")
    (srcdir / "b").write_text("b")
    (srcdir / "..data").write_text("x")
    (srcdir / "sub").mkdir()
    flags = _flags(tmp_path, srcdir)
    assert get_config_file_name_map(flags) == {"a", "b"}


def test_config_file_map_missing_dir(tmp_path):
    flags = _flags(tmp_path, tmp_path / "missing")
    with pytest.raises(OSError):
        get_config_file_name_map(flags)


# update_config_name


def test_config_name_explicit(tmp_path, srcdir):
    (srcdir / "a").write_text("a")
    (srcdir / "b").write_text("b")
    assert update_config_name("b", _flags(tmp_path, srcdir)) == "b"


def test_config_name_explicit_missing(tmp_path, srcdir):
    (srcdir / "a").write_text("a")
    with pytest.raises(ValueError, match="does not exist"):
        update_config_name("zzz", _flags(tmp_path, srcdir))


def test_config_name_no_files(tmp_path, srcdir):
    with pytest.raises(ValueError, match="no configuration files available"):
        update_config_name("a", _flags(tmp_path, srcdir))


def test_config_name_default(tmp_path, srcdir):
    (srcdir / "a").write_text("a")
    (srcdir / "b").write_text("b")
    flags = _flags(tmp_path, srcdir, default_config="a")
    assert update_config_name("", flags) == "a"


def test_config_name_default_missing(tmp_path, srcdir):
    (srcdir / "a").write_text("a")
    flags = _flags(tmp_path, srcdir, default_config="b")
    with pytest.raises(ValueError, match="does not exist"):
        update_config_name("", flags)


def test_fallback_named(tmp_path, srcdir):
    (srcdir / "a").write_text("a")
    (srcdir / NAMED_CONFIG_FALLBACK).write_text("d")
    flags = _flags(tmp_path, srcdir, fallback_strategies=["named"])
    assert update_config_name("", flags) == NAMED_CONFIG_FALLBACK


def test_fallback_single(tmp_path, srcdir):
    (srcdir / "only").write_text("o")
    flags = _flags(tmp_path, srcdir, fallback_strategies=["named", "single"])
    assert update_config_name("", flags) == "only"


def test_fallback_empty_after_failures(tmp_path, srcdir):
    (srcdir / "a").write_text("a")
    (srcdir / "b").write_text("b")
    flags = _flags(tmp_path, srcdir, fallback_strategies=["named", "single", "empty"])
    assert update_config_name("", flags) == ""


def test_fallback_all_fail(tmp_path, srcdir):
    (srcdir / "a").write_text("a")
    (srcdir / "b").write_text("b")
    flags = _flags(tmp_path, srcdir, fallback_strategies=["named", "single"])
    with pytest.raises(ValueError, match="all fallbacks failed"):
        update_config_name("", flags)


def test_fallback_unknown(tmp_path, srcdir):
    (srcdir / "a").write_text("a")
    flags = _flags(tmp_path, srcdir, fallback_strategies=["bogus"])
    with pytest.raises(ValueError, match="unknown fallback strategy: bogus"):
        update_config_name("", flags)


# update_symlink and update_config


def test_update_symlink_creates_and_is_idempotent(tmp_path, srcdir):
    (srcdir / "a").write_text("a")
    flags = _flags(tmp_path, srcdir)
    assert update_symlink("a", flags) is True
    assert os.readlink(flags.config_file_dst) == os.path.join(str(srcdir), "a")
    assert update_symlink("a", flags) is False


def test_update_symlink_retargets(tmp_path, srcdir):
    (srcdir / "a").write_text("a")
    (srcdir / "b").write_text("b")
    flags = _flags(tmp_path, srcdir)
    update_symlink("a", flags)
    assert update_symlink("b", flags) is True
    with open(flags.config_file_dst) as handle:
        assert handle.read() == "b"


def test_update_symlink_empty_points_at_dev_null(tmp_path, srcdir):
    flags = _flags(tmp_path, srcdir)
    assert update_symlink("", flags) is True
    assert os.readlink(flags.config_file_dst) == "/dev/null"


def test_update_symlink_missing_source_when_dst_exists(tmp_path, srcdir):
    (srcdir / "a").write_text("a")
    flags = _flags(tmp_path, srcdir)
    update_symlink("a", flags)
    with pytest.raises(RuntimeError, match="error evaluating realpath"):
        update_symlink("missing", flags)


def test_update_config_without_signal(tmp_path, srcdir):
    (srcdir / "a").write_text("a")
    flags = _flags(tmp_path, srcdir, default_config="a")
    update_config("", flags)
    with open(flags.config_file_dst) as handle:
        assert handle.read() == "a"


def test_update_config_signal_to_missing_process(tmp_path, srcdir):
    (srcdir / "a").write_text("a")
    flags = _flags(
        tmp_path, srcdir, send_signal=True, process_to_signal="/no/such/process-name"
    )
    with pytest.raises(RuntimeError, match="error finding pid"):
        update_config("a", flags)
    # The symlink is updated before signalling.
    assert os.readlink(flags.config_file_dst) == os.path.join(str(srcdir), "a")


# process lookup and signalling


def test_find_pid_no_process(tmp_path, srcdir):
    flags = _flags(tmp_path, srcdir, process_to_signal="/no/such/process-name")
    with pytest.raises(RuntimeError, match="no process found"):
        find_pid_to_signal(flags)


def test_find_pid_matches_argv0(tmp_path, srcdir):
    argv0 = psutil.Process().cmdline()[0]
    flags = _flags(tmp_path, srcdir, process_to_signal=argv0)
    pid = find_pid_to_signal(flags)
    assert psutil.Process(pid).cmdline()[0] == argv0
    assert pid <= os.getpid()


def test_signal_process_missing(tmp_path, srcdir):
    flags = _flags(tmp_path, srcdir, process_to_signal="/no/such/process-name", signal=0)
    with pytest.raises(RuntimeError, match="error finding pid"):
        signal_process(flags)


# NodeLabelWatcher


class FakeNodeApi:
    def __init__(self, items, events):
        self.items = items
        self.events = events
        self.proceed = threading.Event()
        self.stop_event = None
        self.selectors = []

    def list_nodes(self, field_selector):
        self.selectors.append(field_selector)
        return list(self.items), "1"

    def watch_nodes(self, field_selector, resource_version, stop):
        self.stop_event = stop
        self.proceed.wait(5)
        for event in self.events:
            yield event
        stop.wait()


def test_watcher_add_update_delete(tmp_path, srcdir):
    flags = _flags(tmp_path, srcdir)
    config = SyncableConfig()
    api = FakeNodeApi(
        [_node("node", "a")],
        [("MODIFIED", _node("node", "b")), ("DELETED", _node("node", "b"))],
    )
    watcher = NodeLabelWatcher(config, flags, api)
    watcher.start()
    try:
        assert _get_with_timeout(config) == "a"
        assert api.selectors == ["metadata.name=node"]
        api.proceed.set()
        values = {_get_with_timeout(config)}
        if "" not in values:
            values.add(_get_with_timeout(config))
        assert "" in values
    finally:
        watcher.stop()
    assert api.stop_event.is_set()


def test_watcher_ignores_unchanged_label(tmp_path, srcdir):
    flags = _flags(tmp_path, srcdir)
    config = SyncableConfig()
    api = FakeNodeApi(
        [_node("node", "a")],
        [("MODIFIED", _node("node", "a")), ("MODIFIED", _node("node", "c"))],
    )
    watcher = NodeLabelWatcher(config, flags, api)
    watcher.start()
    try:
        assert _get_with_timeout(config) == "a"
        api.proceed.set()
        assert _get_with_timeout(config) == "c"
    finally:
        watcher.stop()


# main


def test_main_rejects_missing_node_name(tmp_path, srcdir, monkeypatch):
    monkeypatch.delenv("NODE_NAME", raising=False)
    argv = [
        "--config-file-srcdir", str(srcdir),
        "--config-file-dst", str(tmp_path / "dst"),
    ]
    assert main(argv) == 1


def test_main_fails_with_missing_kubeconfig(tmp_path, srcdir):
    argv = [
        "--node-name", "node",
        "--config-file-srcdir", str(srcdir),
        "--config-file-dst", str(tmp_path / "dst"),
        "--kubeconfig", str(tmp_path / "missing-kubeconfig"),
    ]
    assert main(argv) == 1
    assert not os.path.lexists(tmp_path / "dst")