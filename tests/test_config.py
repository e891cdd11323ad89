"""
설정 관리 모듈 테스트
"""

import os
import tempfile
import pytest
import yaml
from airgap_mirror.config import Config


def test_default_config():
    """기본 설정 테스트"""
    config = Config(search_defaults=False)
    assert config.mirror.prefix == "airgap"
    assert config.mirror.architecture == "amd64"
    assert config.gpg.min_key_length == 3072
    assert config.gpg.require_signature == False
    assert config.build.use_lock == True
    assert config.release.valid_days == 90


def test_config_load_yaml():
    """YAML 설정 파일 로드 테스트"""
    yaml_content = """
mirror:
  root: "/srv/mirror"
  prefix: "k8s"

kubernetes:
  version: "1.33"

gpg:
  require_signature: true
"""

    with tempfile.NamedTemporaryFile(mode='w', suffix='.yaml', delete=False) as f:
        f.write(yaml_content)
        temp_path = f.name

    try:
        config = Config(temp_path)
        assert config.mirror.root == "/srv/mirror"
        assert str(config.symlink_path) == "/srv/mirror/k8s"
        assert config.gpg.require_signature == True
        assert config.kubernetes.resolved_url() == "https://pkgs.k8s.io/core:/stable:/v1.33/deb"
        # 지정하지 않은 값은 기본값 유지
        assert config.mirror.architecture == "amd64"
    finally:
        os.unlink(temp_path)


def test_config_unknown_keys_ignored(tmp_path):
    """알 수 없는 키 무시"""
    path = tmp_path / "config.yaml"
    path.write_text("mirror:\n  prefix: test\n  bogus: 1\nunknown_section:\n  a: b\n")

    config = Config(str(path))
    assert config.mirror.prefix == "test"
    assert not hasattr(config.mirror, "bogus")


def test_config_invalid_format(tmp_path):
    """최상위가 dict 가 아니면 오류"""
    path = tmp_path / "config.yaml"
    path.write_text("- just\n- a list\n")

    with pytest.raises(ValueError):
        Config(str(path))


def test_config_section_must_be_mapping(tmp_path):
    """섹션 값이 dict 가 아니면 ValueError (AttributeError 아님)"""
    path = tmp_path / "config.yaml"
    path.write_text("build:\n  - 1\n")

    with pytest.raises(ValueError, match="build"):
        Config(str(path))


def test_config_save():
    """설정 저장 테스트"""
    config = Config(search_defaults=False)
    config.mirror.root = "/data/mirror"
    config.packages.kubernetes = ["kubeadm"]

    with tempfile.NamedTemporaryFile(mode='w', suffix='.yaml', delete=False) as f:
        temp_path = f.name

    try:
        config.save(temp_path)

        # 저장된 파일 다시 로드
        config2 = Config(temp_path)
        assert config2.mirror.root == "/data/mirror"
        assert config2.packages.kubernetes == ["kubeadm"]
    finally:
        os.unlink(temp_path)


def test_config_save_json(tmp_path):
    config = Config(search_defaults=False)
    config.release.valid_days = 30
    path = tmp_path / "config.json"
    config.save(str(path))

    assert Config(str(path)).release.valid_days == 30


def test_config_to_dict():
    """딕셔너리 변환 테스트"""
    config = Config(search_defaults=False)
    data = config.to_dict()

    for section in Config.SECTIONS:
        assert section in data
    assert data["build"]["use_lock"] == True
    assert data["gpg"]["key_length"] == 4096


def test_create_sample_is_loadable(tmp_path):
    """샘플 설정 파일은 그대로 로드 가능"""
    path = tmp_path / "sample" / "config.yaml"
    Config(search_defaults=False).create_sample(str(path))

    data = yaml.safe_load(path.read_text(encoding="utf-8"))
    assert data["mirror"]["prefix"] == "airgap"

    config = Config(str(path))
    assert "kubeadm" in config.manifest().all_packages()


def test_manifest_and_sources():
    """매니페스트 구성"""
    config = Config(search_defaults=False)
    manifest = config.manifest()
    packages = manifest.all_packages()

    assert len(packages) == len(set(packages))
    assert packages.index("zfs-dkms") < packages.index("kubeadm") < packages.index("cri-o")
    assert [s.name for s in manifest.sources] == ["kubernetes", "cri-o"]
    assert manifest.sources[0].key_url.endswith("/v1.34/deb/Release.key")
    assert manifest.sources[0].source_line() == (
        "deb [signed-by=/etc/apt/keyrings/kubernetes.gpg] https://pkgs.k8s.io/core:/stable:/v1.34/deb /"
    )


def test_empty_manifest():
    config = Config(search_defaults=False)
    for name in config.to_dict()["packages"]:
        setattr(config.packages, name, [])
    assert config.manifest().is_empty()
    assert len(config.manifest()) == 0


def test_ubuntu_sources():
    config = Config(search_defaults=False)
    sources = config.ubuntu_sources()
    assert len(sources) == 3
    assert sources[0].endswith("noble main universe")
    assert "noble-updates" in sources[1]
    assert "noble-security" in sources[2]
