"""
캐시 재사용
현재 버전의 .deb 를 새 빌드 디렉토리로 하드링크 (다른 파일시스템이면 복사)
"""

import os
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Set

from .logger import get_logger

ARTIFACT_SUFFIX = ".deb"


def list_artifacts(directory: Path) -> Set[str]:
    """디렉토리 바로 아래의 .deb 파일 이름"""
    directory = Path(directory)
    if not directory.is_dir():
        return set()
    return {
        entry.name for entry in directory.iterdir()
        if entry.name.endswith(ARTIFACT_SUFFIX) and entry.is_file()
    }


@dataclass
class SeedResult:
    """캐시 시드 결과"""
    linked: List[str] = field(default_factory=list)
    copied: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.linked) + len(self.copied) + len(self.skipped)


@dataclass
class ReconcileResult:
    """이전 버전 대비 아티팩트 변화"""
    reused: List[str] = field(default_factory=list)
    fetched: List[str] = field(default_factory=list)
    dropped: List[str] = field(default_factory=list)


class CacheReconciler:
    """이전 버전 아티팩트로 새 캐시 디렉토리 채우기"""

    def __init__(self, architecture: str = "amd64"):
        self.architecture = architecture
        self.logger = get_logger()

    def seed(self, current_version_dir: Optional[Path], new_cache_dir: Path) -> SeedResult:
        """현재 버전의 아티팩트를 new_cache_dir 에 하드링크

        이미 같은 이름이 있으면 건너뛰므로 여러 번 호출해도 안전하다.
        """
        result = SeedResult()
        new_cache_dir = Path(new_cache_dir)
        new_cache_dir.mkdir(parents=True, exist_ok=True)

        if current_version_dir is None:
            self.logger.info("  No current mirror, starting with empty cache")
            return result

        source_dir = Path(current_version_dir) / self.architecture
        artifacts = sorted(list_artifacts(source_dir))
        if not artifacts:
            self.logger.info("  Current mirror has no cached packages")
            return result

        self.logger.info(f"  Hardlinking {len(artifacts)} cached packages from current mirror...")

        for name in artifacts:
            src = source_dir / name
            dst = new_cache_dir / name
            if dst.exists():
                result.skipped.append(name)
                continue
            try:
                os.link(src, dst)
                result.linked.append(name)
            except OSError:
                # 다른 파일시스템 (EXDEV) 등
                try:
                    shutil.copy2(src, dst)
                    result.copied.append(name)
                except OSError as e:
                    self.logger.warning(f"Failed to reuse cached package {name}: {e}")
                    result.failed.append(name)

        if result.copied:
            self.logger.info(f"  Hardlink failed for {len(result.copied)} packages, copied instead")
        self.logger.info(
            f"  Cached packages ready: {len(result.linked)} linked, "
            f"{len(result.copied)} copied, {len(result.skipped)} already present"
        )
        return result

    def reconcile(self, previous: Set[str], current: Set[str]) -> ReconcileResult:
        """이전 아티팩트 집합과 다운로드 후 집합 비교"""
        return ReconcileResult(
            reused=sorted(previous & current),
            fetched=sorted(current - previous),
            dropped=sorted(previous - current),
        )
