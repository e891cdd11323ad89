"""
공용 픽스처
외부 명령은 FakeRunner 로 대체한다
"""

import shutil
import subprocess
import tempfile
from pathlib import Path

import pytest

from airgap_mirror.builder import REQUIRED_TOOLS
from airgap_mirror.cache import list_artifacts
from airgap_mirror.config import Config
from airgap_mirror.fetcher import FetchResult, PackageURI
from airgap_mirror.logger import init_logger
from airgap_mirror.signing import KeyPair, SignResult


class FakeRunner:
    """CommandRunner 대체

    handlers: (명령 prefix, 함수) 목록. 함수는 (cmd, kwargs) 를 받아
    CompletedProcess 또는 (returncode, stdout, stderr) 를 반환한다.
    """

    def __init__(self, tools=None):
        self.tools = set(tools or [])
        self.handlers = []
        self.calls = []

    def on(self, prefix, handler):
        self.handlers.append((list(prefix), handler))
        return self

    def which(self, name):
        return f"/usr/bin/{name}" if name in self.tools else None

    def run(self, cmd, **kwargs):
        cmd = [str(c) for c in cmd]
        self.calls.append((cmd, kwargs))
        for prefix, handler in self.handlers:
            if cmd[:len(prefix)] == prefix:
                out = handler(cmd, kwargs)
                if isinstance(out, subprocess.CompletedProcess):
                    return out
                returncode, stdout, stderr = out
                return subprocess.CompletedProcess(cmd, returncode, stdout, stderr)
        empty = b"" if kwargs.get("text") is False else ""
        return subprocess.CompletedProcess(cmd, 0, empty, empty)

    def commands(self, name):
        return [cmd for cmd, _ in self.calls if cmd and cmd[0] == name]


def scanpackages_handler(cmd, kwargs):
    """dpkg-scanpackages 흉내: amd64/*.deb 마다 stanza 하나"""
    arch = cmd[1]
    pkg_dir = Path(kwargs["cwd"]) / arch
    stanzas = []
    for name in sorted(list_artifacts(pkg_dir)):
        package, version, architecture = name[:-4].split("_")
        stanzas.append(
            f"Package: {package}\nVersion: {version}\nArchitecture: {architecture}\n"
            f"Filename: {arch}/{name}\nSize: {(pkg_dir / name).stat().st_size}\n"
        )
    return 0, "\n".join(stanzas) + ("\n" if stanzas else ""), ""


class FakeSandbox:
    """mmdebstrap 없이 동작하는 샌드박스"""

    instances = []

    def __init__(self, cache_dir, config, runner):
        self.cache_dir = Path(cache_dir)
        self.config = config
        self.runner = runner
        self.root = None
        self.torn_down = False
        FakeSandbox.instances.append(self)

    def __enter__(self):
        self.root = Path(tempfile.mkdtemp())
        return self

    def __exit__(self, exc_type, exc, tb):
        shutil.rmtree(self.root, ignore_errors=True)
        self.torn_down = True
        return False

    def build(self):
        return True, "ok"

    def has_apt(self):
        return True

    def prepare(self):
        return True, "ok"


class FakeFetcher:
    """upstream: {파일명: 내용}. 캐시에 없는 것만 '다운로드'"""

    def __init__(self, upstream=None):
        self.upstream = dict(upstream or {})
        self.downloaded = []

    def configure_sources(self, sandbox, manifest):
        return True, "ok"

    def resolve(self, sandbox, manifest):
        result = FetchResult(requested=len(manifest.all_packages()))
        result.before = list_artifacts(sandbox.cache_dir)
        for name, data in sorted(self.upstream.items()):
            target = sandbox.cache_dir / name
            if not target.exists():
                target.write_bytes(data)
                self.downloaded.append(name)
        result.after = list_artifacts(sandbox.cache_dir)
        return result

    def print_uris(self, sandbox, manifest):
        existing = list_artifacts(sandbox.cache_dir)
        return [
            PackageURI(f"http://archive.test/pool/{name}", name, len(data))
            for name, data in sorted(self.upstream.items()) if name not in existing
        ]


class FakeSigner:
    def __init__(self, success=True):
        self.success = success
        self.signed_dirs = []

    def ensure_key(self):
        return KeyPair("ABCDEF", 4096, Path("/k/priv"), Path("/k/pub"), Path("/k/ring"))

    def sign(self, version_dir, keypair, release_files=None):
        if not self.success:
            return SignResult(False, "gpg failed")
        for release in release_files or []:
            (release.parent / "InRelease").write_text("signed")
            (release.parent / "Release.gpg").write_text("sig")
        self.signed_dirs.append(Path(version_dir))
        return SignResult(True, "ok")


@pytest.fixture(autouse=True)
def _test_logger(tmp_path):
    init_logger(str(tmp_path / "logs" / "airgap-mirror.log"), "DEBUG", False)
    yield


@pytest.fixture
def config(tmp_path):
    cfg = Config(search_defaults=False)
    cfg.mirror.root = str(tmp_path / "mirror")
    cfg.mirror.log_file = str(tmp_path / "logs" / "airgap-mirror.log")
    cfg.sandbox.tmp_dir = str(tmp_path)
    cfg.build.preflight = False
    cfg.gpg.private_key_path = str(tmp_path / "keys" / "airgap.gpg")
    cfg.gpg.public_key_path = str(tmp_path / "keys" / "airgap.asc")
    cfg.gpg.keyring_path = str(tmp_path / "keys" / "airgap-keyring.gpg")
    return cfg


@pytest.fixture
def runner():
    fake = FakeRunner(tools=REQUIRED_TOOLS)
    fake.on(["dpkg-scanpackages"], scanpackages_handler)
    return fake
