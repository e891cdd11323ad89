"""
설정 관리 모듈
YAML/JSON 기반 설정 파일 관리 및 기본값 제공
"""

import os
import socket
import yaml
import json
from pathlib import Path
from typing import Dict, Any, Optional, List
from dataclasses import dataclass, field, asdict

from .manifest import Manifest, ExternalSource


@dataclass
class MirrorConfig:
    """미러 경로 설정"""
    root: str = "/var/cache/airgap-mirror"
    prefix: str = "airgap"
    architecture: str = "amd64"
    log_file: str = "/var/log/airgap-mirror.log"
    log_level: str = "INFO"


@dataclass
class UbuntuConfig:
    """Ubuntu 저장소 설정"""
    codename: str = "noble"
    mirror: str = "https://mirror.hetzner.com/ubuntu/packages"
    security_mirror: str = "https://mirror.hetzner.com/ubuntu/security"
    components: list = field(default_factory=lambda: ["main", "universe"])


@dataclass
class RepoConfig:
    """외부 저장소 설정 ({version} 치환 지원)"""
    version: str = "1.34"
    repo_url: str = ""
    key_url: str = ""

    def resolved_url(self) -> str:
        return self.repo_url.format(version=self.version)

    def resolved_key_url(self) -> str:
        return self.key_url.format(version=self.version) if self.key_url else ""


@dataclass
class PackagesConfig:
    """패키지 매니페스트"""
    bootstrap: list = field(default_factory=lambda: [
        "systemd-resolved", "locales", "debconf-i18n", "apt-utils",
        "keyboard-configuration", "console-setup", "kbd", "extlinux",
        "initramfs-tools", "zstd", "curl", "gnupg", "ca-certificates",
    ])
    system: list = field(default_factory=lambda: [
        "linux-image-generic", "linux-headers-generic", "software-properties-common",
        "bash", "curl", "nano", "htop", "net-tools", "ssh", "rsyslog",
    ])
    zfs: list = field(default_factory=lambda: ["zfs-dkms", "zfsutils-linux", "zfs-initramfs"])
    k8s_prereq: list = field(default_factory=lambda: [
        "apt-transport-https", "ca-certificates", "curl", "gpg", "etcd-client",
    ])
    kubernetes: list = field(default_factory=lambda: ["kubelet", "kubeadm", "kubectl"])
    crio: list = field(default_factory=lambda: ["cri-o"])
    crio_ubuntu_deps: list = field(default_factory=lambda: ["runc"])


@dataclass
class GPGConfig:
    """GPG 서명 설정"""
    key_name: str = "Air-Gap Mirror"
    key_email: str = ""  # 비워두면 root@<fqdn>
    key_expire: str = "0"  # 0 = 만료 없음
    key_type: str = "RSA"
    key_length: int = 4096
    min_key_length: int = 3072
    private_key_path: str = "/etc/apt-mirror/keys/airgap.gpg"
    public_key_path: str = "/etc/apt-mirror/keys/airgap.asc"
    keyring_path: str = "/etc/apt/keyrings/airgap.gpg"
    require_signature: bool = False

    def email(self) -> str:
        return self.key_email or f"root@{socket.getfqdn()}"


@dataclass
class ReleaseConfig:
    """Release 파일 필드"""
    origin: str = "Air-Gap Mirror"
    label: str = "Air-Gap Mirror"
    suite: str = "stable"
    codename: str = "stable"
    component: str = "main"
    description: str = "Air-gapped deployment mirror with Ubuntu, Kubernetes, and CRI-O packages"
    valid_days: int = 90


@dataclass
class SandboxConfig:
    """mmdebstrap 샌드박스 설정"""
    variant: str = "apt"
    include: list = field(default_factory=lambda: ["curl", "gnupg", "ca-certificates"])
    orphan_mount_pattern: str = r"/tmp/tmp[^/ ]*/var/cache/apt/archives"
    dns_fallback: str = "8.8.8.8"
    tmp_dir: str = ""


@dataclass
class BuildConfig:
    """빌드 동작 설정"""
    use_lock: bool = True
    preflight: bool = True
    dry_run: bool = False
    verbose: bool = False
    force: bool = False


@dataclass
class ImagesConfig:
    """컨테이너 이미지 설정"""
    kubernetes_version: str = "1.34.1"
    calico_version: str = "3.25.0"
    output_dir: str = "./k8s-images"
    pull_timeout: int = 600
    kubeadm_fallback: list = field(default_factory=lambda: [
        "registry.k8s.io/kube-apiserver:v{k8s}",
        "registry.k8s.io/kube-controller-manager:v{k8s}",
        "registry.k8s.io/kube-scheduler:v{k8s}",
        "registry.k8s.io/kube-proxy:v{k8s}",
        "registry.k8s.io/coredns/coredns:v1.12.0",
        "registry.k8s.io/pause:3.10",
        "registry.k8s.io/etcd:3.5.21-0",
    ])
    calico: list = field(default_factory=lambda: [
        "docker.io/calico/cni:v{calico}",
        "docker.io/calico/node:v{calico}",
        "docker.io/calico/kube-controllers:v{calico}",
        "docker.io/calico/typha:v{calico}",
        "docker.io/calico/pod2daemon-flexvol:v{calico}",
        "docker.io/calico/apiserver:v{calico}",
        "docker.io/calico/csi:v{calico}",
        "docker.io/calico/node-driver-registrar:v{calico}",
        "docker.io/calico/dikastes:v{calico}",
        "docker.io/calico/ctl:v{calico}",
    ])
    utility: list = field(default_factory=lambda: ["quay.io/quay/busybox:latest"])


def _default_kubernetes() -> RepoConfig:
    return RepoConfig(version="1.34", repo_url="https://pkgs.k8s.io/core:/stable:/v{version}/deb")


def _default_crio() -> RepoConfig:
    return RepoConfig(
        version="1.34",
        repo_url="https://ftp.gwdg.de/pub/opensuse/repositories/isv:/cri-o:/stable:/v{version}/deb",
    )


class Config:
    """전체 설정 관리 클래스"""

    DEFAULT_CONFIG_PATHS = [
        "/etc/airgap-mirror/config.yaml",
        "~/.airgap-mirror/config.yaml",
        "./config/config.yaml",
        "./config.yaml",
    ]

    SECTIONS = ("mirror", "ubuntu", "kubernetes", "crio", "packages",
                "gpg", "release", "sandbox", "build", "images")

    def __init__(self, config_path: Optional[str] = None, search_defaults: bool = True):
        self.config_path = config_path
        self.mirror = MirrorConfig()
        self.ubuntu = UbuntuConfig()
        self.kubernetes = _default_kubernetes()
        self.crio = _default_crio()
        self.packages = PackagesConfig()
        self.gpg = GPGConfig()
        self.release = ReleaseConfig()
        self.sandbox = SandboxConfig()
        self.build = BuildConfig()
        self.images = ImagesConfig()

        if config_path:
            self.load(config_path)
        elif search_defaults:
            self._load_from_default_paths()

    @classmethod
    def from_yaml(cls, path: str) -> "Config":
        return cls(path)

    def _load_from_default_paths(self):
        """기본 경로에서 설정 파일 로드"""
        for path in self.DEFAULT_CONFIG_PATHS:
            expanded_path = os.path.expanduser(path)
            if os.path.exists(expanded_path):
                self.load(expanded_path)
                return

    def load(self, path: str):
        """설정 파일 로드"""
        path = os.path.expanduser(path)
        if not os.path.exists(path):
            return

        with open(path, 'r', encoding='utf-8') as f:
            if path.endswith('.json'):
                data = json.load(f)
            else:
                data = yaml.safe_load(f) or {}

        if not isinstance(data, dict):
            raise ValueError(f"설정 파일 형식 오류: {path}")

        self._update_from_dict(data)
        self.config_path = path

    def _update_from_dict(self, data: Dict[str, Any]):
        """딕셔너리에서 설정 업데이트 (알 수 없는 키는 무시)

        Raises:
            ValueError: 섹션 값이 매핑이 아닌 경우
        """
        for section in self.SECTIONS:
            values = data.get(section)
            if not values:
                continue
            if not isinstance(values, dict):
                raise ValueError(f"설정 섹션 형식 오류: {section}")
            target = getattr(self, section)
            for key, value in values.items():
                if hasattr(target, key):
                    setattr(target, key, value)

    # 경로 헬퍼
    @property
    def mirror_root(self) -> Path:
        return Path(self.mirror.root)

    @property
    def symlink_path(self) -> Path:
        return self.mirror_root / self.mirror.prefix

    def manifest(self) -> Manifest:
        """패키지 매니페스트 구성"""
        categories = {
            name: list(value)
            for name, value in asdict(self.packages).items()
        }
        sources = [
            ExternalSource("kubernetes", self.kubernetes.resolved_url(), self.kubernetes.resolved_key_url()),
            ExternalSource("cri-o", self.crio.resolved_url(), self.crio.resolved_key_url()),
        ]
        return Manifest(categories=categories, sources=sources)

    def ubuntu_sources(self) -> List[str]:
        """mmdebstrap 에 전달할 Ubuntu sources 라인"""
        components = " ".join(self.ubuntu.components)
        codename = self.ubuntu.codename
        return [
            f"deb {self.ubuntu.mirror} {codename} {components}",
            f"deb {self.ubuntu.mirror} {codename}-updates {components}",
            f"deb {self.ubuntu.security_mirror} {codename}-security {components}",
        ]

    def save(self, path: Optional[str] = None):
        """설정 파일 저장"""
        save_path = path or self.config_path or self.DEFAULT_CONFIG_PATHS[0]
        save_path = os.path.expanduser(save_path)

        parent = os.path.dirname(save_path)
        if parent:
            os.makedirs(parent, exist_ok=True)

        data = self.to_dict()

        with open(save_path, 'w', encoding='utf-8') as f:
            if save_path.endswith('.json'):
                json.dump(data, f, indent=2)
            else:
                yaml.dump(data, f, default_flow_style=False, allow_unicode=True)

    def to_dict(self) -> Dict[str, Any]:
        """딕셔너리로 변환"""
        return {section: asdict(getattr(self, section)) for section in self.SECTIONS}

    def create_sample(self, output_path: str):
        """샘플 설정 파일 생성"""
        template = """# Air-Gap Mirror Configuration File
# 이 파일을 /etc/airgap-mirror/config.yaml 로 복사하여 사용하세요

# 미러 경로
mirror:
  root: "/var/cache/airgap-mirror"  # 버전 디렉토리가 생성되는 위치
  prefix: "airgap"  # <root>/<prefix> 심볼릭 링크가 현재 버전을 가리킴
  architecture: "amd64"
  log_file: "/var/log/airgap-mirror.log"
  log_level: "INFO"  # DEBUG, INFO, WARNING, ERROR

# Ubuntu 저장소
ubuntu:
  codename: "noble"
  mirror: "https://mirror.hetzner.com/ubuntu/packages"
  security_mirror: "https://mirror.hetzner.com/ubuntu/security"
  components: ["main", "universe"]

# 외부 저장소 ({version} 은 version 값으로 치환)
kubernetes:
  version: "1.34"
  repo_url: "https://pkgs.k8s.io/core:/stable:/v{version}/deb"
  key_url: ""  # 비워두면 <repo_url>/Release.key

crio:
  version: "1.34"
  repo_url: "https://ftp.gwdg.de/pub/opensuse/repositories/isv:/cri-o:/stable:/v{version}/deb"
  key_url: ""

# 패키지 매니페스트
packages:
  system: ["linux-image-generic", "linux-headers-generic", "bash", "curl", "ssh", "rsyslog"]
  zfs: ["zfs-dkms", "zfsutils-linux", "zfs-initramfs"]
  k8s_prereq: ["apt-transport-https", "ca-certificates", "curl", "gpg", "etcd-client"]
  kubernetes: ["kubelet", "kubeadm", "kubectl"]
  crio: ["cri-o"]
  crio_ubuntu_deps: ["runc"]

# GPG 서명
gpg:
  key_name: "Air-Gap Mirror"
  key_email: ""  # 비워두면 root@<fqdn>
  key_length: 4096
  min_key_length: 3072  # 이보다 작은 기존 키는 재생성
  private_key_path: "/etc/apt-mirror/keys/airgap.gpg"  # 0600
  public_key_path: "/etc/apt-mirror/keys/airgap.asc"  # 각 버전에 Release.key 로 복사
  keyring_path: "/etc/apt/keyrings/airgap.gpg"
  require_signature: false  # true 면 서명 실패 시 게시하지 않음

# Release 파일
release:
  origin: "Air-Gap Mirror"
  label: "Air-Gap Mirror"
  suite: "stable"
  valid_days: 90

# 빌드 동작
build:
  use_lock: true  # 동시 실행 방지 (flock)
  preflight: true  # 외부 저장소 접근성 사전 확인

# 컨테이너 이미지 (airgap-mirror images)
images:
  kubernetes_version: "1.34.1"
  calico_version: "3.25.0"  # calico.yaml 의 버전과 일치해야 함
  output_dir: "./k8s-images"
"""

        parent = os.path.dirname(output_path)
        if parent:
            os.makedirs(parent, exist_ok=True)
        with open(output_path, 'w', encoding='utf-8') as f:
            f.write(template)
