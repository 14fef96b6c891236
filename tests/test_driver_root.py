import os

import pytest

from gpushare.driver_root import DriverRoot, resolve_link


def test_join_cleans_path(tmp_path):
    root = DriverRoot(str(tmp_path))
    assert root.join("/usr/lib64", "libx.so") == str(tmp_path / "usr" / "lib64" / "libx.so")
    assert DriverRoot("").join("/usr/lib64") == "/usr/lib64"


def test_is_dev_root(tmp_path):
    root = DriverRoot(str(tmp_path))
    assert root.is_dev_root() is False
    assert root.dev_root() == "/"
    (tmp_path / "dev").mkdir()
    assert root.is_dev_root() is True
    assert root.dev_root() == str(tmp_path)


def test_dev_file_is_not_dev_root(tmp_path):
    (tmp_path / "dev").write_text("")
    assert DriverRoot(str(tmp_path)).is_dev_root() is False


@pytest.mark.parametrize("root", ["", "/"])
def test_try_resolve_library_host_root(root):
    assert DriverRoot(root).try_resolve_library("libnvidia-ml.so.1") == "libnvidia-ml.so.1"


def test_try_resolve_library_follows_symlink(tmp_path):
    lib_dir = tmp_path / "usr" / "lib" / "x86_64-linux-gnu"
    lib_dir.mkdir(parents=True)
    target = lib_dir / "libnvidia-ml.so.550.0"
    target.write_text("")
    os.symlink(target.name, lib_dir / "libnvidia-ml.so.1")
    resolved = DriverRoot(str(tmp_path)).try_resolve_library("libnvidia-ml.so.1")
    assert resolved == str(target.resolve())


def test_try_resolve_library_prefers_first_search_path(tmp_path):
    for sub in ("usr/lib64", "lib64"):
        directory = tmp_path / sub
        directory.mkdir(parents=True)
        (directory / "libfoo.so.1").write_text("")
    resolved = DriverRoot(str(tmp_path)).try_resolve_library("libfoo.so.1")
    assert resolved == str((tmp_path / "usr" / "lib64" / "libfoo.so.1").resolve())


def test_try_resolve_library_not_found(tmp_path):
    assert DriverRoot(str(tmp_path)).try_resolve_library("libfoo.so.1") == "libfoo.so.1"


def test_resolve_link_regular_file(tmp_path):
    path = tmp_path / "file"
    path.write_text("")
    assert resolve_link(str(path)) == str(path.resolve())


def test_resolve_link_missing(tmp_path):
    with pytest.raises(OSError, match="error resolving link"):
        resolve_link(str(tmp_path / "missing"))


def test_resolve_link_dangling_symlink(tmp_path):
    link = tmp_path / "link"
    os.symlink(tmp_path / "absent", link)
    with pytest.raises(OSError):
        resolve_link(str(link))