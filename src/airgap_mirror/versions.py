"""
버전 저장소 및 원자적 교체

    <root>/<prefix>-20250101-120000/   <- 이전 버전
    <root>/<prefix>-20250108-120000/   <- 현재 버전
    <root>/<prefix> -> <prefix>-20250108-120000

심볼릭 링크 교체는 항상 임시 링크를 만든 뒤 rename 한 번으로 수행한다.
"""

import os
import shutil
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Optional

from .logger import get_logger


@dataclass
class SwitchResult:
    """원자적 교체 결과 (정리할 이전 버전이 없으면 reclaimed=True)"""
    previous: Optional[Path] = None
    reclaimed: bool = True


class VersionStore:
    """버전 디렉토리 + current 심볼릭 링크 관리"""

    def __init__(self, root: Path, prefix: str = "airgap", architecture: str = "amd64"):
        self.root = Path(root)
        self.prefix = prefix
        self.architecture = architecture
        self.logger = get_logger()

    @property
    def symlink(self) -> Path:
        return self.root / self.prefix

    def current_version_path(self) -> Optional[Path]:
        """현재 게시된 버전 디렉토리 (없으면 None)"""
        link = self.symlink
        if link.is_symlink():
            target = link.resolve()
            return target if target.is_dir() else None
        if link.is_dir():
            # 버전 관리 이전 레이아웃
            return link
        return None

    def new_version_path(self, now: Optional[datetime] = None) -> Path:
        """빌드 시작 시각 기반 새 버전 경로 (디렉토리는 만들지 않음)"""
        stamp = (now or datetime.now()).strftime("%Y%m%d-%H%M%S")
        candidate = self.root / f"{self.prefix}-{stamp}"
        counter = 1
        while candidate.exists() or candidate.is_symlink():
            candidate = self.root / f"{self.prefix}-{stamp}-{counter}"
            counter += 1
        return candidate

    def create_version(self, now: Optional[datetime] = None) -> Path:
        """새 버전 디렉토리와 아티팩트 하위 디렉토리 생성"""
        self.root.mkdir(parents=True, exist_ok=True)
        path = self.new_version_path(now)
        # 동시 실행 시 exist_ok=False 로 충돌 감지
        path.mkdir()
        (path / self.architecture).mkdir()
        return path

    def artifact_dir(self, version_dir: Path) -> Path:
        return Path(version_dir) / self.architecture

    def _migrate_plain_directory(self) -> Path:
        """<prefix> 가 일반 디렉토리인 경우 옆으로 이동"""
        stamp = datetime.now().strftime("%Y%m%d-%H%M%S")
        backup = self.root / f"{self.prefix}-old-{stamp}"
        counter = 1
        while backup.exists():
            backup = self.root / f"{self.prefix}-old-{stamp}-{counter}"
            counter += 1
        self.logger.info(f"  Migrating existing directory to versioned format: {backup}")
        os.rename(self.symlink, backup)
        return backup

    def publish(self, new_path: Path) -> Optional[Path]:
        """심볼릭 링크를 new_path 로 원자적으로 교체

        Returns:
            교체 전 버전 경로 (없으면 None)
        """
        new_path = Path(new_path).resolve()
        link = self.symlink

        old_path: Optional[Path] = None
        if link.is_symlink():
            old_path = link.resolve()
        elif link.is_dir():
            old_path = self._migrate_plain_directory()
        elif link.exists():
            raise FileExistsError(f"{link} exists and is neither a symlink nor a directory")

        temp_link = self.root / f"{self.prefix}.new-{os.getpid()}"
        if temp_link.is_symlink() or temp_link.exists():
            temp_link.unlink()

        # 상대 경로 링크 (미러 루트를 통째로 옮겨도 유지)
        os.symlink(os.path.relpath(new_path, self.root.resolve()), temp_link)
        try:
            os.replace(temp_link, link)
        except OSError:
            if temp_link.is_symlink():
                temp_link.unlink()
            raise

        self.logger.info(f"  Symlink updated: {link} -> {new_path.name}")
        return old_path

    def reclaim(self, old_path: Path) -> bool:
        """버전 디렉토리 삭제 (현재 버전은 삭제하지 않음)"""
        old_path = Path(old_path)
        current = self.current_version_path()
        if current is not None and old_path.resolve() == current.resolve():
            self.logger.warning(f"Refusing to reclaim current version: {old_path}")
            return False
        if not old_path.exists():
            return True
        try:
            shutil.rmtree(old_path)
            self.logger.info(f"  Removed old version: {old_path}")
            return True
        except OSError as e:
            self.logger.warning(f"Failed to remove old version {old_path}: {e}")
            return False

    def switch_to(self, new_dir: Path) -> SwitchResult:
        """원자적 교체 후 이전 버전 정리

        정리 실패는 게시를 되돌리지 않고 결과에만 기록한다.
        """
        new_dir = Path(new_dir).resolve()
        self.logger.info("Performing atomic switch...")
        self.logger.info(f"  New: {new_dir}")
        self.logger.info(f"  Symlink: {self.symlink}")

        old_dir = self.publish(new_dir)

        if old_dir is not None and old_dir.resolve() != new_dir and old_dir.is_dir():
            return SwitchResult(previous=old_dir, reclaimed=self.reclaim(old_dir))
        return SwitchResult()

    def discard(self, version_dir: Path):
        """게시되지 않은 빌드 디렉토리 삭제 (best-effort)"""
        version_dir = Path(version_dir)
        current = self.current_version_path()
        if current is not None and current.resolve() == version_dir.resolve():
            return
        if version_dir.exists():
            self.logger.info(f"Removing incomplete mirror build: {version_dir}")
            shutil.rmtree(version_dir, ignore_errors=True)

    def list_versions(self):
        """루트 아래 버전 디렉토리 목록"""
        if not self.root.is_dir():
            return []
        return sorted(
            p for p in self.root.iterdir()
            if p.is_dir() and not p.is_symlink() and p.name.startswith(f"{self.prefix}-")
        )
