"""
패키지 매니페스트
미러가 반드시 포함해야 하는 패키지 목록과 외부 저장소 정의
"""

from dataclasses import dataclass, field
from typing import Dict, List


# 매니페스트 카테고리 순서 (Ubuntu 저장소에서 받는 것들이 먼저)
UBUNTU_CATEGORIES = ["bootstrap", "system", "zfs", "k8s_prereq", "crio_ubuntu_deps"]
KUBERNETES_CATEGORIES = ["kubernetes"]
CRIO_CATEGORIES = ["crio"]


@dataclass
class ExternalSource:
    """외부 APT 저장소 (URL + 서명 키)"""
    name: str
    url: str
    key_url: str = ""

    def __post_init__(self):
        self.url = self.url.rstrip("/")
        if not self.key_url:
            self.key_url = f"{self.url}/Release.key"

    @property
    def keyring_path(self) -> str:
        """chroot 내부 keyring 경로"""
        return f"/etc/apt/keyrings/{self.name}.gpg"

    @property
    def list_path(self) -> str:
        """chroot 내부 sources.list.d 경로"""
        return f"/etc/apt/sources.list.d/{self.name}.list"

    def source_line(self) -> str:
        return f"deb [signed-by={self.keyring_path}] {self.url} /"


@dataclass
class Manifest:
    """카테고리별 패키지 목록"""
    categories: Dict[str, List[str]] = field(default_factory=dict)
    sources: List[ExternalSource] = field(default_factory=list)

    def packages(self, *names: str) -> List[str]:
        """지정한 카테고리의 패키지 (중복 제거, 순서 유지)"""
        seen = set()
        result = []
        for name in names:
            for pkg in self.categories.get(name, []):
                if pkg and pkg not in seen:
                    seen.add(pkg)
                    result.append(pkg)
        return result

    def ubuntu_packages(self) -> List[str]:
        return self.packages(*UBUNTU_CATEGORIES)

    def kubernetes_packages(self) -> List[str]:
        return self.packages(*KUBERNETES_CATEGORIES)

    def crio_packages(self) -> List[str]:
        return self.packages(*CRIO_CATEGORIES)

    def all_packages(self) -> List[str]:
        """Ubuntu ∪ Kubernetes ∪ CRI-O 전체 목록"""
        ordered = UBUNTU_CATEGORIES + KUBERNETES_CATEGORIES + CRIO_CATEGORIES
        extra = [name for name in self.categories if name not in ordered]
        return self.packages(*(ordered + extra))

    def is_empty(self) -> bool:
        return not self.all_packages()

    def __len__(self) -> int:
        return len(self.all_packages())
