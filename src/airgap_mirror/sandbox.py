"""
mmdebstrap 샌드박스
apt 만 동작하는 최소 chroot 를 만들고, 새 버전의 캐시 디렉토리를
/var/cache/apt/archives 에 bind mount 한다.

    with Sandbox(cache_dir, config, runner) as sandbox:
        sandbox.build()
        sandbox.prepare()
        ...

with 블록을 벗어나면 (예외, 시그널 포함) 마운트 해제 후 디렉토리를 삭제한다.
"""

import shlex
import subprocess
import shutil
import tempfile
from pathlib import Path
from typing import List, Optional, Tuple

from .cache import list_artifacts
from .logger import get_logger
from .mounts import MountManager

APT_ARCHIVES = "var/cache/apt/archives"
STALE_METADATA = ["Packages", "Packages.gz", "Release", "Release.gpg", "InRelease"]


class Sandbox:
    """일회용 패키지 해석 환경"""

    def __init__(self, cache_dir: Path, config, runner, mounts: Optional[MountManager] = None):
        self.cache_dir = Path(cache_dir)
        self.config = config
        self.runner = runner
        self.mounts = mounts or MountManager(runner)
        self.verbose = config.build.verbose
        self.logger = get_logger()
        self.root: Optional[Path] = None

    # 수명 주기
    def __enter__(self) -> "Sandbox":
        self.mounts.cleanup_orphans(self.config.sandbox.orphan_mount_pattern)
        tmp_parent = self.config.sandbox.tmp_dir or None
        self.root = Path(tempfile.mkdtemp(dir=tmp_parent)).resolve()
        self.logger.info(f"Chroot: {self.root}")
        return self

    def __exit__(self, exc_type, exc, tb):
        self.teardown()
        return False

    @property
    def archives_dir(self) -> Path:
        return self.root / APT_ARCHIVES

    def teardown(self):
        """마운트 해제 및 삭제 (실패는 로그만 남김)"""
        if self.root is None:
            return
        self.logger.info("Cleaning up chroot environment...")
        try:
            if self.mounts.is_mounted(self.archives_dir):
                self.mounts.unmount(self.archives_dir)
            self.mounts.unmount_all_under(self.root)
            self.mounts.cleanup_orphans(self.config.sandbox.orphan_mount_pattern)
        except (OSError, subprocess.SubprocessError) as e:
            self.logger.warning(f"Unmount during teardown failed: {e}")

        # 마운트가 남아 있으면 rmtree 가 캐시를 지울 수 있으므로 삭제하지 않는다
        remaining = self.mounts.mounts_under(self.root)
        if remaining:
            self.logger.warning(f"Mounts still active under {self.root}, leaving it in place: {remaining}")
        else:
            shutil.rmtree(self.root, ignore_errors=True)
        self.root = None

    # 구성
    def mmdebstrap_command(self, cached_count: int) -> List[str]:
        """mmdebstrap 명령 구성"""
        sandbox_cfg = self.config.sandbox
        cache = shlex.quote(str(self.cache_dir))
        archives = f'"$1"/{APT_ARCHIVES}'

        cmd = [
            "mmdebstrap",
            f"--variant={sandbox_cfg.variant}",
            f"--include={','.join(sandbox_cfg.include)}",
            f"--components={','.join(self.config.ubuntu.components)}",
        ]

        if cached_count > 0:
            # 캐시를 복사하지 않고 바로 apt 캐시로 사용
            cmd.append(f"--setup-hook=mkdir -p {archives}/partial && mount --bind {cache} {archives}")
            cmd.append(f"--customize-hook=umount {archives} 2>/dev/null || true")

        # 부트스트랩 과정에서 받은 패키지를 캐시로 되돌림
        cmd.append(
            f"--customize-hook=for deb in {archives}/*.deb; do "
            f"[ -f \"$deb\" ] || continue; "
            f"[ -f {cache}/\"$(basename \"$deb\")\" ] || cp \"$deb\" {cache}/; done"
        )

        cmd.extend([self.config.ubuntu.codename, str(self.root)])
        cmd.extend(self.config.ubuntu_sources())
        return cmd

    def build(self) -> Tuple[bool, str]:
        """최소 chroot 생성

        mmdebstrap 실패는 치명적이지 않다. 다음 단계에서 apt-get 존재 여부로 판단한다.
        """
        self.logger.info(f"Creating minimal Ubuntu {self.config.ubuntu.codename} chroot with mmdebstrap (apt-only)...")

        (self.cache_dir / "partial").mkdir(parents=True, exist_ok=True)
        cached_count = len(list_artifacts(self.cache_dir))
        self.logger.info(f"  Existing cached packages: {cached_count}")

        result = self.runner.run(self.mmdebstrap_command(cached_count), capture=not self.verbose)
        if result.returncode != 0:
            self.logger.warning(f"mmdebstrap exited with {result.returncode}, continuing with cleanup")

        # customize hook 이 실패했을 수 있으므로 직접 확인
        if self.mounts.is_mounted(self.archives_dir):
            self.logger.info("  Unmounting bind mount from chroot...")
            self.mounts.unmount(self.archives_dir)
        self.mounts.cleanup_orphans(self.config.sandbox.orphan_mount_pattern)

        synced = self.sync_back()
        new_count = len(list_artifacts(self.cache_dir))
        self.logger.info(f"  Cached packages after bootstrap: {new_count} (+{new_count - cached_count})")
        if synced:
            self.logger.debug(f"  Synced {synced} packages from chroot staging area")

        if result.returncode != 0:
            return False, f"mmdebstrap exit {result.returncode}"
        self.logger.info(f"Clean chroot created at {self.root}")
        return True, "chroot 생성 완료"

    def sync_back(self) -> int:
        """chroot 내부 archives 의 .deb 를 캐시로 복사 (bind mount 가 아닐 때)"""
        if self.root is None or self.mounts.is_mounted(self.archives_dir):
            return 0
        copied = 0
        existing = list_artifacts(self.cache_dir)
        for name in sorted(list_artifacts(self.archives_dir) - existing):
            try:
                shutil.copy2(self.archives_dir / name, self.cache_dir / name)
                copied += 1
            except OSError as e:
                self.logger.warning(f"Failed to sync {name} to cache: {e}")
        return copied

    def has_apt(self) -> bool:
        return self.root is not None and (self.root / "usr/bin/apt-get").exists()

    def prepare(self) -> Tuple[bool, str]:
        """캐시 bind mount 및 DNS 설정"""
        self.logger.info("Setting up chroot environment (minimal for apt download-only)...")

        for name in STALE_METADATA:
            stale = self.cache_dir / name
            if stale.exists():
                stale.unlink()
        (self.cache_dir / "partial").mkdir(parents=True, exist_ok=True)

        if not self.mounts.is_mounted(self.archives_dir):
            if not self.mounts.bind(self.cache_dir, self.archives_dir):
                return False, "bind mount 실패"
        self.logger.info("  Mirror bind-mounted as apt cache")

        self.configure_dns()
        self.logger.info("Chroot environment ready")
        return True, "준비 완료"

    def _host_dns_servers(self) -> List[str]:
        if not self.runner.which("resolvectl"):
            return []
        result = self.runner.run(["resolvectl", "dns"])
        if result.returncode != 0:
            return []

        servers: List[str] = []
        link_servers: List[str] = []
        for line in result.stdout.splitlines():
            parts = line.split()
            if line.startswith("Global:"):
                servers.extend(parts[1:])
            elif line.startswith("Link ") and len(parts) > 3 and not link_servers:
                link_servers = parts[3:]
        return (servers or link_servers)[:3]

    def configure_dns(self):
        """chroot 의 resolv.conf 작성"""
        self.logger.info("  Setting up DNS resolution...")
        etc = self.root / "etc"
        etc.mkdir(parents=True, exist_ok=True)
        (self.root / "run/systemd/resolve").mkdir(parents=True, exist_ok=True)
        resolv = etc / "resolv.conf"
        if resolv.is_symlink():
            resolv.unlink()

        servers = self._host_dns_servers()
        if servers:
            resolv.write_text("".join(f"nameserver {s}\n" for s in servers))
            self.logger.info(f"  Using DNS: {' '.join(servers)}")
        elif Path("/etc/resolv.conf").is_file() and not self.runner.which("resolvectl"):
            shutil.copyfile("/etc/resolv.conf", resolv)
        else:
            resolv.write_text(f"nameserver {self.config.sandbox.dns_fallback}\n")
            self.logger.warning(f"No DNS found, using {self.config.sandbox.dns_fallback}")

    def chroot(self, cmd: List[str], **kwargs):
        """chroot 내부에서 명령 실행"""
        return self.runner.run(["chroot", str(self.root)] + list(cmd), **kwargs)
