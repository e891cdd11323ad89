"""
마운트 테이블 헬퍼
/proc/mounts 파싱, bind mount, 고아 마운트 정리
"""

import re
from pathlib import Path
from typing import List

from .logger import get_logger

PROC_MOUNTS = "/proc/mounts"


def _unescape(field: str) -> str:
    # /proc/mounts 는 공백 등을 8진수로 이스케이프한다 (\040)
    return re.sub(r"\\([0-7]{3})", lambda m: chr(int(m.group(1), 8)), field)


def read_mount_points(mounts_file: str = PROC_MOUNTS) -> List[str]:
    """현재 마운트 지점 목록"""
    try:
        with open(mounts_file, "r", encoding="utf-8") as f:
            lines = f.readlines()
    except OSError:
        return []

    points = []
    for line in lines:
        parts = line.split()
        if len(parts) >= 2:
            points.append(_unescape(parts[1]))
    return points


class MountManager:
    """bind mount 생성/해제"""

    def __init__(self, runner, mounts_file: str = PROC_MOUNTS):
        self.runner = runner
        self.mounts_file = mounts_file
        self.logger = get_logger()

    def mount_points(self) -> List[str]:
        return read_mount_points(self.mounts_file)

    def is_mounted(self, path: Path) -> bool:
        # 커널은 심볼릭 링크를 푼 경로를 기록한다
        return str(Path(path).resolve()) in self.mount_points()

    def bind(self, source: Path, target: Path) -> bool:
        Path(target).mkdir(parents=True, exist_ok=True)
        result = self.runner.run(["mount", "--bind", str(source), str(target)])
        if result.returncode != 0:
            self.logger.error(f"Bind mount failed: {source} -> {target}: {result.stderr}")
            return False
        self.logger.debug(f"Bind mounted {source} -> {target}")
        return True

    def unmount(self, target: Path) -> bool:
        """umount (실패해도 예외 없음)"""
        result = self.runner.run(["umount", str(target)])
        if result.returncode != 0:
            # lazy unmount 재시도
            result = self.runner.run(["umount", "-l", str(target)])
        return result.returncode == 0

    def mounts_under(self, prefix: Path) -> List[str]:
        """prefix 아래 마운트 (깊은 경로 먼저)"""
        prefix_str = str(Path(prefix).resolve()).rstrip("/") + "/"
        found = [p for p in self.mount_points() if p.startswith(prefix_str)]
        return sorted(found, reverse=True)

    def matching(self, pattern: str) -> List[str]:
        regex = re.compile(pattern)
        return sorted((p for p in self.mount_points() if regex.search(p)), reverse=True)

    def cleanup_orphans(self, pattern: str) -> List[str]:
        """이전 실행이 남긴 캐시 bind mount 해제"""
        cleaned = []
        for mount_point in self.matching(pattern):
            self.logger.info(f"  Cleaning up orphan mount: {mount_point}")
            if self.unmount(Path(mount_point)):
                cleaned.append(mount_point)
            else:
                self.logger.warning(f"Failed to unmount orphan mount: {mount_point}")
        return cleaned

    def unmount_all_under(self, prefix: Path) -> List[str]:
        released = []
        for mount_point in self.mounts_under(prefix):
            self.logger.info(f"  Unmounting: {mount_point}")
            if self.unmount(Path(mount_point)):
                released.append(mount_point)
            else:
                self.logger.warning(f"Failed to unmount: {mount_point}")
        return released
