"""
샌드박스 수명 주기 테스트
mount/umount 는 가짜 마운트 테이블 파일에 반영된다
"""

import os
from pathlib import Path

import pytest

from airgap_mirror.mounts import MountManager
from airgap_mirror.sandbox import Sandbox

from conftest import FakeRunner


def _mount_table(tmp_path, runner, umount_fails=False):
    mounts = tmp_path / "mounts"
    mounts.write_text("")

    def mount(cmd, kwargs):
        with open(mounts, "a") as f:
            f.write(f"none {os.path.realpath(cmd[-1])} none rw,bind 0 0\n")
        return 0, "", ""

    def umount(cmd, kwargs):
        if umount_fails:
            return 32, "", "target is busy"
        target = os.path.realpath(cmd[-1])
        lines = [line for line in mounts.read_text().splitlines(True) if f" {target} " not in line]
        mounts.write_text("".join(lines))
        return 0, "", ""

    runner.on(["mount", "--bind"], mount)
    runner.on(["umount"], umount)
    return MountManager(runner, str(mounts)), mounts


def _cache(tmp_path):
    cache = tmp_path / "airgap-new" / "amd64"
    cache.mkdir(parents=True)
    (cache / "a_1_amd64.deb").write_bytes(b"a")
    return cache


def test_teardown_on_exception(tmp_path, config):
    """예외가 나도 마운트 해제 후 chroot 삭제, 캐시는 보존"""
    runner = FakeRunner()
    mounts, table = _mount_table(tmp_path, runner)
    cache = _cache(tmp_path)

    with pytest.raises(RuntimeError):
        with Sandbox(cache, config, runner, mounts) as sandbox:
            root = sandbox.root
            ok, _ = sandbox.prepare()
            assert ok
            assert mounts.is_mounted(sandbox.archives_dir)
            raise RuntimeError("boom")

    assert not root.exists()
    assert table.read_text() == ""
    assert (cache / "a_1_amd64.deb").read_bytes() == b"a"


def test_teardown_keeps_tree_when_mount_remains(tmp_path, config):
    """마운트가 남아 있으면 rmtree 하지 않음"""
    runner = FakeRunner()
    mounts, table = _mount_table(tmp_path, runner, umount_fails=True)
    cache = _cache(tmp_path)

    with Sandbox(cache, config, runner, mounts) as sandbox:
        root = sandbox.root
        sandbox.prepare()

    assert root.exists()
    assert (cache / "a_1_amd64.deb").exists()


def test_teardown_through_symlinked_tmp_dir(tmp_path, config):
    """tmp_dir 가 심볼릭 링크여도 마운트를 찾아 해제한 뒤 삭제"""
    real = tmp_path / "real"
    real.mkdir()
    linked = tmp_path / "linked"
    linked.symlink_to(real)
    config.sandbox.tmp_dir = str(linked)

    runner = FakeRunner()
    mounts, table = _mount_table(tmp_path, runner)
    cache = _cache(tmp_path)

    with Sandbox(cache, config, runner, mounts) as sandbox:
        sandbox.prepare()
        assert str(real.resolve()) in table.read_text()
        assert mounts.is_mounted(sandbox.archives_dir)

    assert runner.commands("umount")
    assert table.read_text() == ""
    assert list(real.iterdir()) == []
    assert (cache / "a_1_amd64.deb").read_bytes() == b"a"


def test_mmdebstrap_command_with_cache(tmp_path, config):
    runner = FakeRunner()
    mounts, _ = _mount_table(tmp_path, runner)

    with Sandbox(_cache(tmp_path), config, runner, mounts) as sandbox:
        cmd = sandbox.mmdebstrap_command(cached_count=1)
        root = str(sandbox.root)

    assert cmd[0] == "mmdebstrap"
    assert "--variant=apt" in cmd
    assert "--include=curl,gnupg,ca-certificates" in cmd
    assert any(c.startswith("--setup-hook=") and "mount --bind" in c for c in cmd)
    assert sum(1 for c in cmd if c.startswith("--customize-hook=")) == 2
    assert cmd[cmd.index("noble") + 1] == root
    assert cmd[-3:] == config.ubuntu_sources()


def test_mmdebstrap_command_without_cache(tmp_path, config):
    runner = FakeRunner()
    mounts, _ = _mount_table(tmp_path, runner)

    with Sandbox(tmp_path / "empty", config, runner, mounts) as sandbox:
        cmd = sandbox.mmdebstrap_command(cached_count=0)

    assert not any(c.startswith("--setup-hook=") for c in cmd)
    assert sum(1 for c in cmd if c.startswith("--customize-hook=")) == 1


def test_build_syncs_bootstrap_packages(tmp_path, config):
    """bind mount 없이 받은 패키지를 캐시로 복사"""
    runner = FakeRunner()
    mounts, _ = _mount_table(tmp_path, runner)
    cache = tmp_path / "airgap-new" / "amd64"
    cache.mkdir(parents=True)

    def mmdebstrap(cmd, kwargs):
        root = Path(cmd[cmd.index("noble") + 1])
        (root / "usr/bin").mkdir(parents=True)
        (root / "usr/bin/apt-get").write_text("")
        archives = root / "var/cache/apt/archives"
        archives.mkdir(parents=True)
        (archives / "apt_2.8_amd64.deb").write_bytes(b"apt")
        return 0, "", ""

    runner.on(["mmdebstrap"], mmdebstrap)

    with Sandbox(cache, config, runner, mounts) as sandbox:
        ok, _ = sandbox.build()
        assert ok
        assert sandbox.has_apt()

    assert (cache / "apt_2.8_amd64.deb").read_bytes() == b"apt"


def test_build_failure_is_not_fatal(tmp_path, config):
    runner = FakeRunner()
    mounts, _ = _mount_table(tmp_path, runner)
    runner.on(["mmdebstrap"], lambda cmd, kw: (1, "", "E: boom"))

    with Sandbox(tmp_path / "cache", config, runner, mounts) as sandbox:
        ok, msg = sandbox.build()
        assert not ok
        assert "1" in msg
        assert not sandbox.has_apt()


def test_dns_from_resolvectl(tmp_path, config):
    runner = FakeRunner(tools=["resolvectl"])
    mounts, _ = _mount_table(tmp_path, runner)
    runner.on(["resolvectl", "dns"], lambda cmd, kw: (
        0, "Global: 1.1.1.1 9.9.9.9\nLink 2 (eth0): 10.0.0.1\n", ""
    ))

    with Sandbox(tmp_path / "cache", config, runner, mounts) as sandbox:
        sandbox.configure_dns()
        content = (sandbox.root / "etc/resolv.conf").read_text()

    assert content == "nameserver 1.1.1.1\nnameserver 9.9.9.9\n"


def test_dns_fallback(tmp_path, config):
    runner = FakeRunner(tools=["resolvectl"])
    mounts, _ = _mount_table(tmp_path, runner)
    runner.on(["resolvectl", "dns"], lambda cmd, kw: (1, "", ""))

    with Sandbox(tmp_path / "cache", config, runner, mounts) as sandbox:
        sandbox.configure_dns()
        content = (sandbox.root / "etc/resolv.conf").read_text()

    assert content == "nameserver 8.8.8.8\n"
