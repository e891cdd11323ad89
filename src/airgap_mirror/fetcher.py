"""
패키지 다운로드
샌드박스 안에서 외부 저장소를 추가하고 apt-get --download-only 로 매니페스트를 받는다.
bind mount 된 캐시에 이미 있는 패키지는 apt 가 알아서 건너뛴다.
"""

import re
import shlex
from dataclasses import dataclass, field
from typing import List, Set, Tuple

from .cache import list_artifacts
from .logger import get_logger
from .manifest import Manifest

# 'http://host/pool/k/kubeadm_1.34.1_amd64.deb' kubeadm_1.34.1_amd64.deb 12345 SHA256:abcd
URI_LINE = re.compile(r"^'(?P<uri>[^']+)'\s+(?P<filename>\S+)\s+(?P<size>\d+)\s*(?P<hash>\S*)")


@dataclass
class PackageURI:
    uri: str
    filename: str
    size: int
    checksum: str = ""


@dataclass
class FetchResult:
    """다운로드 결과"""
    requested: int = 0
    before: Set[str] = field(default_factory=set)
    after: Set[str] = field(default_factory=set)
    returncode: int = 0

    @property
    def new(self) -> List[str]:
        return sorted(self.after - self.before)

    @property
    def success(self) -> bool:
        return self.returncode == 0


def parse_print_uris(output: str) -> List[PackageURI]:
    """apt-get --print-uris 출력 파싱"""
    uris = []
    for line in output.splitlines():
        match = URI_LINE.match(line.strip())
        if match:
            uris.append(PackageURI(
                uri=match.group("uri"),
                filename=match.group("filename"),
                size=int(match.group("size")),
                checksum=match.group("hash"),
            ))
    return uris


class FetchDriver:
    """샌드박스 내부 apt-get 구동"""

    def __init__(self, verbose: bool = False):
        self.verbose = verbose
        self.logger = get_logger()

    def configure_sources(self, sandbox, manifest: Manifest) -> Tuple[bool, str]:
        """외부 저장소 keyring / sources.list 추가 후 apt-get update"""
        self.logger.info("Configuring external repositories in chroot...")
        failed = []

        for source in manifest.sources:
            self.logger.info(f"  Adding {source.name} repository...")
            script = (
                "mkdir -p /etc/apt/keyrings && "
                f"curl -fsSL {shlex.quote(source.key_url)} | "
                f"gpg --batch --yes --dearmor -o {shlex.quote(source.keyring_path)} && "
                f"echo {shlex.quote(source.source_line())} > {shlex.quote(source.list_path)}"
            )
            result = sandbox.chroot(["/bin/bash", "-c", script])
            if result.returncode != 0:
                self.logger.warning(f"Failed to add {source.name} repository: {(result.stderr or '').strip()}")
                failed.append(source.name)

        self.logger.info("  Updating package lists...")
        result = sandbox.chroot(["apt-get", "update", "-qq"])
        if result.returncode != 0:
            self.logger.warning(f"apt-get update exited with {result.returncode}: {(result.stderr or '').strip()}")
            failed.append("apt-get update")

        if failed:
            return False, f"실패: {', '.join(failed)}"
        self.logger.info("External repositories configured")
        return True, "저장소 설정 완료"

    def resolve(self, sandbox, manifest: Manifest) -> FetchResult:
        """매니페스트 전체를 캐시로 다운로드

        apt-get 실패는 경고로만 남긴다. 최종 판단은 메타데이터 단계의 패키지 수 확인이다.
        """
        packages = manifest.all_packages()
        self.logger.info("Downloading packages via apt-get...")
        self.logger.info(f"  Package manifest: {len(packages)} packages")
        self.logger.debug(f"  Packages: {' '.join(packages)}")

        result = FetchResult(requested=len(packages))
        result.before = list_artifacts(sandbox.cache_dir)

        proc = sandbox.chroot(["apt-get", "install", "--download-only", "-y"] + packages)
        result.returncode = proc.returncode
        for line in (proc.stdout or "").splitlines():
            self.logger.debug(f"  apt: {line}")
        if proc.returncode != 0:
            self.logger.warning(f"Some packages may have failed (apt-get exit {proc.returncode})")
            for line in (proc.stderr or "").strip().splitlines()[-10:]:
                self.logger.warning(f"  {line}")

        result.after = list_artifacts(sandbox.cache_dir)
        self.logger.info(
            f"Package download complete: {len(result.before)} cached, {len(result.new)} new"
        )
        return result

    def print_uris(self, sandbox, manifest: Manifest) -> List[PackageURI]:
        """dry-run: 받아야 할 URI 만 조회"""
        proc = sandbox.chroot(
            ["apt-get", "install", "--print-uris", "-y"] + manifest.all_packages()
        )
        if proc.returncode != 0:
            self.logger.warning(f"apt-get --print-uris exited with {proc.returncode}")
        return parse_print_uris(proc.stdout or "")
