"""
CLI 메인 인터페이스
Click 및 Rich 기반
"""

import os
import sys
import click
import yaml
from rich.console import Console
from rich.table import Table

from . import __version__
from .builder import MirrorBuilder, install_signal_handlers
from .cache import list_artifacts
from .config import Config
from .errors import SigningError
from .images import ImageSaver
from .logger import init_logger
from .shell import CommandRunner
from .signing import GPGSigner
from .versions import VersionStore

console = Console()


def _read_config(config_path) -> Config:
    """설정 로드 (형식 오류는 메시지 출력 후 종료)"""
    try:
        return Config(config_path)
    except (OSError, ValueError, yaml.YAMLError) as e:
        console.print(f"[red]✗ 설정 파일 오류: {str(e)}[/red]")
        sys.exit(1)


def _load_config(config_path, **build_flags) -> Config:
    cfg = _read_config(config_path)
    for key, value in build_flags.items():
        if value:
            setattr(cfg.build, key, value)
    return cfg


def _require_root():
    """루트 권한 확인 (chroot, mount 필요)"""
    if os.geteuid() != 0:
        console.print("[red]오류: 이 명령은 root 권한이 필요합니다.[/red]")
        sys.exit(1)


@click.group()
@click.version_option(version=__version__)
def cli():
    """Air-Gap Mirror Generator

    폐쇄망 Kubernetes 배포를 위한 최소 APT 미러를 생성하고 서명합니다.
    """
    pass


@cli.command()
@click.option('--config', '-c', 'config_path', type=click.Path(exists=True), help='설정 파일 경로')
@click.option('--dry-run', is_flag=True, help='다운로드 없이 받을 패키지 URI 만 출력')
@click.option('--verbose', '-v', is_flag=True, help='상세 로그')
@click.option('--force', is_flag=True, help='이전 버전 캐시를 재사용하지 않고 전부 다시 받기')
def build(config_path, dry_run, verbose, force):
    """미러 빌드 및 원자적 게시"""
    cfg = _load_config(config_path, dry_run=dry_run, verbose=verbose, force=force)
    init_logger(cfg.mirror.log_file, cfg.mirror.log_level, cfg.build.verbose)

    _require_root()
    install_signal_handlers()

    result = MirrorBuilder(cfg).run()
    sys.exit(result.exit_code)


@cli.command()
@click.argument('output', type=click.Path(), default='./config.yaml')
def init(output):
    """샘플 설정 파일 생성"""
    cfg = Config(search_defaults=False)
    cfg.create_sample(output)
    console.print(f"[green]✓ 샘플 설정 파일 생성: {output}[/green]")
    console.print("[cyan]설정 파일을 편집한 후 다음 명령어로 실행하세요:[/cyan]")
    console.print(f"[cyan]  airgap-mirror build --config {output}[/cyan]")


@cli.command()
@click.option('--config', '-c', 'config_path', type=click.Path(exists=True), help='설정 파일 경로')
def validate(config_path):
    """설정 파일 유효성 검사"""
    try:
        cfg = Config(config_path)
    except Exception as e:
        console.print(f"[red]✗ 설정 파일 오류: {str(e)}[/red]")
        sys.exit(1)

    manifest = cfg.manifest()
    if manifest.is_empty():
        console.print("[red]✗ 패키지 매니페스트가 비어 있습니다.[/red]")
        sys.exit(1)

    console.print("[green]✓ 설정 파일이 유효합니다.[/green]")

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("항목", style="cyan")
    table.add_column("값")

    table.add_row("미러 경로", str(cfg.symlink_path))
    table.add_row("Ubuntu", f"{cfg.ubuntu.codename} ({' '.join(cfg.ubuntu.components)})")
    for source in manifest.sources:
        table.add_row(f"저장소: {source.name}", source.url)
    table.add_row("패키지 수", str(len(manifest)))
    table.add_row("서명 필수", "예" if cfg.gpg.require_signature else "아니오")
    table.add_row("빌드 잠금", "예" if cfg.build.use_lock else "아니오")

    console.print(table)


@cli.command()
@click.option('--config', '-c', 'config_path', type=click.Path(exists=True), help='설정 파일 경로')
def status(config_path):
    """현재 게시된 미러 상태"""
    cfg = _read_config(config_path)
    init_logger(cfg.mirror.log_file, cfg.mirror.log_level, False)
    store = VersionStore(cfg.mirror_root, cfg.mirror.prefix, cfg.mirror.architecture)
    current = store.current_version_path()

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("항목", style="cyan")
    table.add_column("값")

    table.add_row("심볼릭 링크", str(store.symlink))
    if current is None:
        table.add_row("현재 버전", "[red]없음[/red]")
    else:
        artifacts = list_artifacts(store.artifact_dir(current))
        table.add_row("현재 버전", current.name)
        table.add_row("패키지 수", str(len(artifacts)))
        table.add_row("서명", "예" if (current / "InRelease").exists() else "[yellow]아니오[/yellow]")
    versions = store.list_versions()
    table.add_row("버전 디렉토리", str(len(versions)))

    console.print(table)
    sys.exit(0 if current is not None else 1)


@cli.command()
@click.option('--config', '-c', 'config_path', type=click.Path(exists=True), help='설정 파일 경로')
def keygen(config_path):
    """서명 키 생성 (이미 있으면 재사용)"""
    cfg = _read_config(config_path)
    init_logger(cfg.mirror.log_file, cfg.mirror.log_level, False)
    signer = GPGSigner(cfg.gpg, CommandRunner())
    try:
        keypair = signer.ensure_key()
    except SigningError as e:
        console.print(f"[red]✗ {e}[/red]")
        sys.exit(1)

    state = "생성됨" if keypair.generated else "기존 키 재사용"
    console.print(f"[green]✓ {keypair.fingerprint} ({keypair.bits}-bit, {state})[/green]")
    console.print(f"  공개 키: {keypair.public_key_path}")
    console.print(f"  Keyring: {keypair.keyring_path}")


@cli.command(name="client-setup")
@click.option('--config', '-c', 'config_path', type=click.Path(exists=True), help='설정 파일 경로')
@click.option('--url', default="http://mirror.local", show_default=True, help='미러를 제공하는 웹 서버 주소')
def client_setup(config_path, url):
    """클라이언트 노드 설정 명령 출력"""
    cfg = _read_config(config_path)
    base = f"{url.rstrip('/')}/{cfg.mirror.prefix}"
    keyring = "/etc/apt/keyrings/airgap.gpg"
    console.print("[bold]클라이언트에서 실행:[/bold]\n")
    console.print(f"curl -fsSL {base}/Release.key | gpg --dearmor -o {keyring}", markup=False)
    console.print(
        f"echo 'deb [signed-by={keyring}] {base} {cfg.release.suite} {cfg.release.component}' "
        f"> /etc/apt/sources.list.d/airgap.list",
        markup=False,
    )
    console.print("apt-get update", markup=False)


@cli.command()
@click.argument('output_dir', type=click.Path(), required=False)
@click.option('--config', '-c', 'config_path', type=click.Path(exists=True), help='설정 파일 경로')
def images(output_dir, config_path):
    """kubeadm / Calico 이미지를 tar 로 저장"""
    cfg = _read_config(config_path)
    init_logger(cfg.mirror.log_file, cfg.mirror.log_level, False)
    saver = ImageSaver(cfg.images, CommandRunner())

    try:
        result = saver.run(output_dir)
    except RuntimeError as e:
        console.print(f"[red]✗ {e}[/red]")
        sys.exit(1)

    table = Table(title="이미지 저장 결과")
    table.add_column("이미지", style="cyan")
    table.add_column("상태")
    for image in result.succeeded:
        table.add_row(image, "[green]✓[/green]")
    for image in result.failed:
        table.add_row(image, "[red]✗[/red]")
    console.print(table)

    sys.exit(0 if not result.failed else 1)


def main():
    """메인 엔트리 포인트"""
    cli()


if __name__ == '__main__':
    main()
