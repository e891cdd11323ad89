"""
컨테이너 이미지 저장 테스트
"""

import pytest

from airgap_mirror.config import ImagesConfig
from airgap_mirror.images import ImageSaver, image_filename

from conftest import FakeRunner


def test_image_filename():
    assert image_filename("registry.k8s.io/pause:3.10") == "registry.k8s.io_pause_3.10.tar"
    assert image_filename("docker.io/calico/node:v3.25.0") == "docker.io_calico_node_v3.25.0.tar"


def test_fallback_images_without_kubeadm():
    saver = ImageSaver(ImagesConfig(), FakeRunner())
    images = saver.kubeadm_images()

    assert "registry.k8s.io/kube-apiserver:v1.34.1" in images
    assert "registry.k8s.io/pause:3.10" in images


def test_kubeadm_image_list():
    runner = FakeRunner(tools=["kubeadm"])
    runner.on(["kubeadm", "config", "images", "list"], lambda cmd, kw: (
        0, "registry.k8s.io/kube-apiserver:v1.34.1\nregistry.k8s.io/pause:3.10\n", ""
    ))
    saver = ImageSaver(ImagesConfig(), runner)

    assert saver.kubeadm_images() == ["registry.k8s.io/kube-apiserver:v1.34.1", "registry.k8s.io/pause:3.10"]
    assert runner.calls[0][0][-1] == "--kubernetes-version=v1.34.1"


def test_all_images_deduplicated():
    config = ImagesConfig(utility=["registry.k8s.io/pause:3.10", "quay.io/quay/busybox:latest"])
    images = ImageSaver(config, FakeRunner()).all_images()

    assert images == sorted(set(images))
    assert images.count("registry.k8s.io/pause:3.10") == 1
    assert "docker.io/calico/node:v3.25.0" in images


def test_run_records_failures(tmp_path):
    """한 이미지 실패가 나머지를 막지 않음"""
    config = ImagesConfig(kubeadm_fallback=["registry.k8s.io/pause:3.10"], calico=[], utility=["bad/image:1"])
    runner = FakeRunner(tools=["podman"])
    runner.on(["podman", "pull", "bad/image:1"], lambda cmd, kw: (125, "", "manifest unknown"))
    saver = ImageSaver(config, runner)

    result = saver.run(str(tmp_path / "images"))

    assert saver.container_cmd == "podman"
    assert result.succeeded == ["registry.k8s.io/pause:3.10"]
    assert result.failed == ["bad/image:1"]
    assert result.total == 2
    assert result.files == [tmp_path / "images" / "registry.k8s.io_pause_3.10.tar"]


def test_run_without_runtime(tmp_path):
    with pytest.raises(RuntimeError):
        ImageSaver(ImagesConfig(), FakeRunner()).run(str(tmp_path))
