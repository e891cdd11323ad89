"""
미러 빌드 파이프라인

INIT -> SANDBOXED -> FETCHING -> METADATA -> SIGNED(선택) -> PUBLISHED -> RECLAIMED
어느 단계에서든 TORN_DOWN 으로 정리되며, PUBLISHED 에 도달하지 못한 새 버전은 삭제된다.
"""

import fcntl
import os
import signal
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, List, Optional

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from .cache import CacheReconciler, ReconcileResult, SeedResult
from .config import Config
from .errors import LockError, MirrorError, RequirementsError, SigningError
from .fetcher import FetchDriver, FetchResult, PackageURI
from .logger import get_logger
from .metadata import IndexDescriptor, MetadataEngine
from .network import SourceChecker
from .sandbox import Sandbox
from .shell import CommandRunner
from .signing import GPGSigner, SignResult
from .versions import VersionStore

console = Console()

REQUIRED_TOOLS = ["mmdebstrap", "gpg", "dpkg-scanpackages", "chroot", "mount", "umount"]


class BuildState(Enum):
    INIT = "init"
    SANDBOXED = "sandboxed"
    FETCHING = "fetching"
    METADATA = "metadata"
    SIGNED = "signed"
    PUBLISHED = "published"
    RECLAIMED = "reclaimed"
    TORN_DOWN = "torn_down"


@dataclass
class BuildResult:
    """빌드 1회 결과"""
    success: bool = False
    exit_code: int = 1
    message: str = ""
    version_dir: Optional[Path] = None
    previous_dir: Optional[Path] = None
    states: List[BuildState] = field(default_factory=lambda: [BuildState.INIT])
    seed: Optional[SeedResult] = None
    fetch: Optional[FetchResult] = None
    reconcile: Optional[ReconcileResult] = None
    index: Optional[IndexDescriptor] = None
    signature: Optional[SignResult] = None
    uris: List[PackageURI] = field(default_factory=list)

    @property
    def state(self) -> BuildState:
        return self.states[-1]

    @property
    def published(self) -> bool:
        return BuildState.PUBLISHED in self.states


@contextmanager
def build_lock(lock_path: Path):
    """flock 기반 동시 실행 방지"""
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    handle = open(lock_path, "w")
    try:
        try:
            fcntl.flock(handle, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            raise LockError(f"Another build holds {lock_path}")
        handle.write(f"{os.getpid()}\n")
        handle.flush()
        yield
    finally:
        handle.close()


@contextmanager
def no_lock():
    yield


def _raise_interrupt(signum, frame):
    raise KeyboardInterrupt(f"signal {signum}")


def install_signal_handlers():
    """SIGTERM/SIGHUP 도 KeyboardInterrupt 로 바꿔 정리 루틴이 실행되게 한다"""
    for signum in (signal.SIGTERM, signal.SIGHUP):
        signal.signal(signum, _raise_interrupt)


class MirrorBuilder:
    """미러 빌드 오케스트레이터"""

    def __init__(
        self,
        config: Config,
        runner: Optional[CommandRunner] = None,
        store: Optional[VersionStore] = None,
        reconciler: Optional[CacheReconciler] = None,
        sandbox_factory: Optional[Callable[..., Sandbox]] = None,
        fetcher: Optional[FetchDriver] = None,
        metadata: Optional[MetadataEngine] = None,
        signer: Optional[GPGSigner] = None,
        source_checker: Optional[SourceChecker] = None,
    ):
        self.config = config
        self.logger = get_logger()
        self.runner = runner or CommandRunner(config.build.verbose)
        self.store = store or VersionStore(config.mirror_root, config.mirror.prefix, config.mirror.architecture)
        self.reconciler = reconciler or CacheReconciler(config.mirror.architecture)
        self.sandbox_factory = sandbox_factory or Sandbox
        self.fetcher = fetcher or FetchDriver(config.build.verbose)
        self.metadata = metadata or MetadataEngine(config, self.runner)
        self.signer = signer or GPGSigner(config.gpg, self.runner)
        self.source_checker = source_checker
        self.execution_log = []

    def log_step(self, step: str, status: str, message: str = ""):
        """실행 단계 기록"""
        self.execution_log.append({
            "step": step,
            "status": status,
            "message": message
        })

    @property
    def lock_path(self) -> Path:
        return self.config.mirror_root / f".{self.config.mirror.prefix}.lock"

    def check_requirements(self):
        """필수 명령 확인

        Raises:
            RequirementsError: 누락된 도구가 있는 경우
        """
        self.logger.info("Checking requirements...")
        missing = [cmd for cmd in REQUIRED_TOOLS if not self.runner.which(cmd)]
        if missing:
            self.log_step("요구사항 확인", "failed", ", ".join(missing))
            raise RequirementsError(missing)
        self.logger.info("All requirements satisfied")
        self.log_step("요구사항 확인", "success", "완료")

    def preflight(self):
        """업스트림 접근성 확인 (경고만)"""
        if not self.config.build.preflight:
            return
        checker = self.source_checker or SourceChecker()
        manifest = self.config.manifest()
        urls = [self.config.ubuntu.mirror] + [source.key_url for source in manifest.sources]
        results = checker.check_sources(urls)
        failed = [url for url, (ok, _) in results.items() if not ok]
        if failed:
            for url in failed:
                self.logger.warning(f"Upstream source unreachable: {url}")
            self.log_step("소스 확인", "warning", f"{len(failed)}개 실패")
        else:
            self.log_step("소스 확인", "success", "완료")

    def run(self) -> BuildResult:
        """메인 실행 로직"""
        result = BuildResult()
        build_cfg = self.config.build

        console.print(Panel.fit(
            "[bold cyan]Air-Gap Mirror Generator[/bold cyan]\n"
            "폐쇄망 배포용 최소 APT 미러를 생성합니다.",
            border_style="cyan"
        ))
        self.logger.info("=== Air-Gap Mirror build started ===")
        if build_cfg.dry_run:
            self.logger.info("DRY RUN MODE")

        try:
            lock = build_lock(self.lock_path) if build_cfg.use_lock else no_lock()
            with lock:
                self.check_requirements()
                self.preflight()
                self._build(result)
        except LockError as e:
            self.logger.error(str(e))
            self.log_step("빌드 잠금", "failed", "다른 빌드 실행 중")
            result.message = str(e)
        except MirrorError as e:
            self.logger.error(f"Build failed: {e}")
            result.message = str(e)
        except KeyboardInterrupt:
            console.print("\n[yellow]빌드가 중단되었습니다.[/yellow]")
            self.logger.warning("Build interrupted")
            result.message = "interrupted"
            result.exit_code = 130
        except Exception as e:
            console.print(f"\n[red]예상치 못한 오류 발생: {str(e)}[/red]")
            self.logger.exception("Unexpected error occurred")
            result.message = str(e)

        if result.success:
            result.exit_code = 0
        self.show_summary(result)
        return result

    def _advance(self, result: BuildResult, state: BuildState):
        result.states.append(state)
        self.logger.debug(f"State -> {state.value}")

    def _build(self, result: BuildResult):
        build_cfg = self.config.build
        manifest = self.config.manifest()

        current = self.store.current_version_path()
        version_dir = self.store.create_version()
        cache_dir = self.store.artifact_dir(version_dir)
        result.version_dir = version_dir

        self.logger.info(f"Current mirror: {current or 'none'}")
        self.logger.info(f"Building new: {version_dir}")
        self.logger.info(f"Symlink: {self.store.symlink}")

        try:
            if build_cfg.force:
                self.logger.info("Force rebuild: not reusing cached packages")
                result.seed = self.reconciler.seed(None, cache_dir)
            else:
                result.seed = self.reconciler.seed(current, cache_dir)
            self.log_step("캐시 재사용", "success", f"{result.seed.total}개")
            previous = set(result.seed.linked + result.seed.copied + result.seed.skipped)

            with self.sandbox_factory(cache_dir, self.config, self.runner) as sandbox:
                ok, msg = sandbox.build()
                self.log_step("chroot 생성", "success" if ok else "warning", msg)

                if not sandbox.has_apt():
                    raise MirrorError("apt-get not found in chroot, sandbox construction failed")

                ok, msg = sandbox.prepare()
                if not ok:
                    raise MirrorError(f"Failed to prepare chroot: {msg}")
                self._advance(result, BuildState.SANDBOXED)

                ok, msg = self.fetcher.configure_sources(sandbox, manifest)
                self.log_step("외부 저장소", "success" if ok else "warning", msg)

                if build_cfg.dry_run:
                    result.uris = self.fetcher.print_uris(sandbox, manifest)
                    self._print_uris(result.uris)
                    self.log_step("dry-run", "success", f"{len(result.uris)}개 URI")
                    result.success = True
                    result.message = "dry-run"
                    return

                self._advance(result, BuildState.FETCHING)
                result.fetch = self.fetcher.resolve(sandbox, manifest)
                self.log_step(
                    "패키지 다운로드",
                    "success" if result.fetch.success else "warning",
                    f"신규 {len(result.fetch.new)}개",
                )

            result.reconcile = self.reconciler.reconcile(previous, result.fetch.after)
            self.logger.info(
                f"Reused {len(result.reconcile.reused)}, fetched {len(result.reconcile.fetched)}"
            )

            self._advance(result, BuildState.METADATA)
            result.index = self.metadata.regenerate(version_dir)
            self.log_step("메타데이터", "success", f"{result.index.package_count}개 패키지")

            self._sign(result, version_dir)

            switch = self.store.switch_to(version_dir)
            result.previous_dir = switch.previous
            self._advance(result, BuildState.PUBLISHED)
            self.log_step("원자적 교체", "success", version_dir.name)
            if switch.reclaimed:
                self._advance(result, BuildState.RECLAIMED)
            else:
                # 게시는 유지, 이전 버전 디렉토리만 남음
                self.log_step("이전 버전 정리", "warning", f"{switch.previous.name} 삭제 실패")

            result.success = True
            result.message = "complete"
            self._report(result)
        finally:
            self._advance(result, BuildState.TORN_DOWN)
            if not result.published:
                self.store.discard(version_dir)

    def _sign(self, result: BuildResult, version_dir: Path):
        """서명 (실패 시 정책에 따라 경고 또는 중단)"""
        self.logger.info("Signing repository...")
        try:
            keypair = self.signer.ensure_key()
            result.signature = self.signer.sign(version_dir, keypair, result.index.release_files)
        except SigningError as e:
            result.signature = SignResult(False, str(e))

        if result.signature.success:
            self._advance(result, BuildState.SIGNED)
            self.log_step("서명", "success", "완료")
            return

        if self.config.gpg.require_signature:
            self.log_step("서명", "failed", result.signature.message)
            raise SigningError(f"Signing failed: {result.signature.message}")
        self.logger.warning(f"Signing failed, publishing unsigned mirror: {result.signature.message}")
        self.log_step("서명", "warning", "서명 없이 게시")

    def _print_uris(self, uris: List[PackageURI]):
        self.logger.info("")
        self.logger.info("=== Packages to download (dry-run) ===")
        for item in uris:
            console.print(item.uri)
        self.logger.info(f"{len(uris)} packages, {sum(u.size for u in uris)} bytes")

    def _report(self, result: BuildResult):
        pkg_dir = self.store.artifact_dir(result.version_dir)
        size = sum(p.stat().st_size for p in pkg_dir.glob("*.deb"))
        self.logger.info("==========================================")
        self.logger.info("Complete")
        self.logger.info(f"Location: {result.version_dir}")
        self.logger.info(f"Symlink: {self.store.symlink} -> {result.version_dir}")
        self.logger.info(f"Packages: {result.index.artifact_count}")
        self.logger.info(f"Size: {size / (1024 * 1024):.1f} MiB")

    def show_summary(self, result: BuildResult):
        """실행 결과 요약 표시"""
        console.print("\n" + "=" * 60)
        console.print("[bold]실행 결과 요약[/bold]")
        console.print("=" * 60 + "\n")

        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("단계", style="cyan", width=20)
        table.add_column("상태", width=8)
        table.add_column("메시지", width=30)

        icons = {"success": ("✓", "green"), "warning": ("⚠", "yellow")}
        for log in self.execution_log:
            icon, color = icons.get(log["status"], ("✗", "red"))
            table.add_row(
                log["step"],
                f"[{color}]{icon}[/{color}]",
                log["message"][:30] if log["message"] else ""
            )
        console.print(table)

        if result.success:
            console.print(f"\n[bold green]✓ 완료 ({result.message})[/bold green]")
        else:
            console.print(f"\n[bold red]✗ 실패: {result.message}[/bold red]")
            console.print("[yellow]이전 미러 버전은 변경되지 않았습니다.[/yellow]")

        log_files = self.logger.get_log_files()
        console.print(f"\n[bold]로그 파일:[/bold] {log_files['main_log']}")
