"""
컨테이너 이미지 pull & save
kubeadm / Calico / 유틸리티 이미지를 받아 tar 로 저장 (폐쇄망 노드로 USB 이동용)
"""

import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Tuple

from rich.console import Console

from .logger import get_logger

console = Console()


def image_filename(image: str) -> str:
    """registry.k8s.io/pause:3.10 -> registry.k8s.io_pause_3.10.tar"""
    return image.replace("/", "_").replace(":", "_") + ".tar"


@dataclass
class ImagePullResult:
    """이미지 저장 결과"""
    succeeded: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    files: List[Path] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.succeeded) + len(self.failed)


class ImageSaver:
    """docker 또는 podman 으로 이미지 저장"""

    RUNTIMES = ("docker", "podman")

    def __init__(self, images_config, runner):
        self.config = images_config
        self.runner = runner
        self.logger = get_logger()
        self.container_cmd: Optional[str] = None

    def detect_runtime(self) -> Optional[str]:
        for name in self.RUNTIMES:
            if self.runner.which(name):
                self.container_cmd = name
                self.logger.info(f"Using {name} as container runtime")
                return name
        return None

    def kubeadm_images(self) -> List[str]:
        """kubeadm 이 필요로 하는 이미지 (kubeadm 이 없으면 고정 목록)"""
        version = self.config.kubernetes_version
        self.logger.info(f"Getting list of kubeadm required images for Kubernetes v{version}...")
        if self.runner.which("kubeadm"):
            result = self.runner.run(
                ["kubeadm", "config", "images", "list", f"--kubernetes-version=v{version}"]
            )
            if result.returncode == 0:
                return [line.strip() for line in result.stdout.splitlines() if line.strip()]
            self.logger.warning("kubeadm config images list failed, using fallback list")
        return [image.format(k8s=version) for image in self.config.kubeadm_fallback]

    def calico_images(self) -> List[str]:
        return [image.format(calico=self.config.calico_version) for image in self.config.calico]

    def all_images(self) -> List[str]:
        """중복 제거 후 정렬"""
        images = self.kubeadm_images() + self.calico_images() + list(self.config.utility)
        return sorted(set(images))

    def pull_and_save(self, image: str, output_dir: Path) -> Tuple[bool, Optional[Path]]:
        filepath = output_dir / image_filename(image)
        self.logger.info(f"Pulling: {image}")
        pulled = self.runner.run(
            [self.container_cmd, "pull", image],
            timeout=self.config.pull_timeout,
        )
        if pulled.returncode != 0:
            self.logger.warning(f"✗ Failed to pull: {image}")
            return False, None

        self.logger.info(f"Saving: {image} -> {filepath.name}")
        saved = self.runner.run(
            [self.container_cmd, "save", "-o", str(filepath), image],
            timeout=self.config.pull_timeout,
        )
        if saved.returncode != 0:
            self.logger.warning(f"✗ Failed to save: {image}")
            return False, None
        return True, filepath

    def run(self, output_dir: Optional[str] = None) -> ImagePullResult:
        """전체 이미지 처리

        Raises:
            RuntimeError: docker/podman 모두 없음
        """
        if not self.container_cmd and not self.detect_runtime():
            raise RuntimeError("Neither Docker nor Podman found. Please install one of them.")

        target = Path(output_dir or self.config.output_dir)
        target.mkdir(parents=True, exist_ok=True)

        images = self.all_images()
        self.logger.info(f"Total images to download: {len(images)}")

        result = ImagePullResult()
        for index, image in enumerate(images, start=1):
            console.print(f"[cyan][{index}/{len(images)}] {image}[/cyan]")
            try:
                ok, path = self.pull_and_save(image, target)
            except (OSError, subprocess.SubprocessError) as e:
                # 타임아웃 등 한 이미지 실패가 전체를 멈추지 않게 한다
                self.logger.warning(f"✗ {image}: {e}")
                ok, path = False, None
            if ok:
                result.succeeded.append(image)
                result.files.append(path)
            else:
                result.failed.append(image)

        self.logger.info(f"Succeeded: {len(result.succeeded)}")
        if result.failed:
            self.logger.warning(f"Failed: {len(result.failed)}")
        return result
