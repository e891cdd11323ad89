"""
버전 저장소 / 원자적 교체 테스트
"""

import os
from datetime import datetime

import pytest

from airgap_mirror.versions import VersionStore


def _store(tmp_path):
    return VersionStore(tmp_path / "mirror", "airgap", "amd64")


def test_no_current_version(tmp_path):
    store = _store(tmp_path)
    assert store.current_version_path() is None
    assert store.list_versions() == []


def test_new_version_path_is_unique(tmp_path):
    """같은 초에 두 번 만들어도 경로가 겹치지 않음"""
    store = _store(tmp_path)
    now = datetime(2025, 1, 8, 12, 0, 0)

    first = store.create_version(now)
    second = store.create_version(now)

    assert first.name == "airgap-20250108-120000"
    assert second.name == "airgap-20250108-120000-1"
    assert (first / "amd64").is_dir()


def test_publish_creates_relative_symlink(tmp_path):
    store = _store(tmp_path)
    version = store.create_version()

    old = store.publish(version)

    assert old is None
    assert store.symlink.is_symlink()
    assert os.readlink(store.symlink) == version.name
    assert store.current_version_path() == version.resolve()
    # 임시 링크가 남지 않음
    assert not list(store.root.glob("airgap.new-*"))


def test_switch_to_reclaims_previous(tmp_path):
    store = _store(tmp_path)
    first = store.create_version()
    store.switch_to(first)
    second = store.create_version()

    switch = store.switch_to(second)

    assert switch.previous == first.resolve()
    assert switch.reclaimed
    assert not first.exists()
    assert store.current_version_path() == second.resolve()


def test_switch_to_reports_failed_reclaim(tmp_path, monkeypatch):
    """이전 버전 삭제 실패는 결과에 기록되고 게시는 유지"""
    store = _store(tmp_path)
    first = store.create_version()
    store.switch_to(first)
    second = store.create_version()

    def fail(path):
        raise PermissionError(13, "Permission denied", str(path))

    monkeypatch.setattr("airgap_mirror.versions.shutil.rmtree", fail)
    switch = store.switch_to(second)

    assert switch.previous == first.resolve()
    assert not switch.reclaimed
    assert first.exists()
    assert store.current_version_path() == second.resolve()


def test_switch_to_first_publish(tmp_path):
    store = _store(tmp_path)
    switch = store.switch_to(store.create_version())
    assert switch.previous is None
    assert switch.reclaimed


def test_migrates_plain_directory(tmp_path):
    """버전 관리 이전의 일반 디렉토리를 옆으로 옮기고 링크로 교체"""
    store = _store(tmp_path)
    legacy = store.symlink
    (legacy / "amd64").mkdir(parents=True)
    (legacy / "amd64" / "a_1_amd64.deb").write_bytes(b"a")

    assert store.current_version_path() == legacy

    version = store.create_version()
    old = store.publish(version)

    assert old.name.startswith("airgap-old-")
    assert (old / "amd64" / "a_1_amd64.deb").read_bytes() == b"a"
    assert store.symlink.is_symlink()


def test_publish_refuses_regular_file(tmp_path):
    store = _store(tmp_path)
    store.root.mkdir(parents=True)
    store.symlink.write_text("not a mirror")
    version = store.create_version()

    with pytest.raises(FileExistsError):
        store.publish(version)
    assert store.symlink.read_text() == "not a mirror"


def test_failed_replace_keeps_old_version(tmp_path, monkeypatch):
    """rename 실패 시 링크는 이전 버전을 그대로 가리킴"""
    store = _store(tmp_path)
    first = store.create_version()
    store.switch_to(first)
    second = store.create_version()

    def broken_replace(src, dst):
        raise OSError("injected")

    monkeypatch.setattr(os, "replace", broken_replace)

    with pytest.raises(OSError):
        store.switch_to(second)

    assert store.current_version_path() == first.resolve()
    assert first.exists()
    assert not list(store.root.glob("airgap.new-*"))


def test_reclaim_refuses_current(tmp_path):
    store = _store(tmp_path)
    version = store.create_version()
    store.publish(version)

    assert store.reclaim(version) == False
    assert version.exists()


def test_discard_skips_current(tmp_path):
    store = _store(tmp_path)
    current = store.create_version()
    store.publish(current)
    pending = store.create_version()

    store.discard(current)
    store.discard(pending)

    assert current.exists()
    assert not pending.exists()


def test_list_versions_excludes_symlink(tmp_path):
    store = _store(tmp_path)
    first = store.create_version()
    second = store.create_version()
    store.publish(second)

    assert store.list_versions() == sorted([first, second])
