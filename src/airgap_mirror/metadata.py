"""
저장소 메타데이터 생성
Packages, Packages.gz, Release (평면 레이아웃 + dists/ 레이아웃)
"""

import gzip
import hashlib
import shutil
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from email.utils import format_datetime
from pathlib import Path
from typing import Dict, List, Optional

from jinja2 import Template

from .cache import list_artifacts
from .errors import EmptyMirrorError, MirrorError
from .logger import get_logger

HASH_ALGORITHMS = [
    ("MD5Sum", "md5"),
    ("SHA1", "sha1"),
    ("SHA256", "sha256"),
    ("SHA512", "sha512"),
]

RELEASE_TEMPLATE = Template(
    """Origin: {{ origin }}
Label: {{ label }}
Suite: {{ suite }}
Codename: {{ codename }}
Architectures: {{ architecture }}
Components: {{ component }}
Description: {{ description }}
Date: {{ date }}
Valid-Until: {{ valid_until }}
{% for title, algo in algorithms %}
{{ title }}:
{% for entry in entries %}
 {{ entry.hashes[algo] }} {{ entry.size }} {{ entry.path }}
{% endfor %}
{% endfor %}
""",
    trim_blocks=True,
    lstrip_blocks=True,
    keep_trailing_newline=True,
)


@dataclass
class IndexEntry:
    """Release 에 기록되는 인덱스 파일"""
    path: str
    size: int
    hashes: Dict[str, str] = field(default_factory=dict)


@dataclass
class IndexDescriptor:
    """메타데이터 생성 결과"""
    version_dir: Path
    artifact_count: int
    package_count: int
    date: datetime
    valid_until: datetime
    release_files: List[Path] = field(default_factory=list)
    entries: List[IndexEntry] = field(default_factory=list)


def file_hashes(path: Path) -> Dict[str, str]:
    """여러 해시 알고리즘을 한 번에 계산"""
    digests = {algo: hashlib.new(algo) for _, algo in HASH_ALGORITHMS}
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(1024 * 1024), b""):
            for digest in digests.values():
                digest.update(chunk)
    return {algo: digest.hexdigest() for algo, digest in digests.items()}


def gzip_file(source: Path, target: Path):
    """재현 가능한 gzip (mtime=0, 파일명 없음)"""
    with open(source, "rb") as src, open(target, "wb") as raw:
        with gzip.GzipFile(filename="", mode="wb", fileobj=raw, mtime=0, compresslevel=9) as gz:
            shutil.copyfileobj(src, gz)


def release_date(value: datetime) -> str:
    return format_datetime(value.astimezone(timezone.utc), usegmt=True)


class MetadataEngine:
    """Packages / Release 재생성"""

    def __init__(self, config, runner):
        self.config = config
        self.runner = runner
        self.architecture = config.mirror.architecture
        self.logger = get_logger()

    def dists_dir(self, version_dir: Path) -> Path:
        return Path(version_dir) / "dists" / self.config.release.suite

    def binary_dir(self, version_dir: Path) -> Path:
        return self.dists_dir(version_dir) / self.config.release.component / f"binary-{self.architecture}"

    def _clean(self, version_dir: Path):
        """apt 임시 디렉토리와 오래된 메타데이터 제거"""
        pkg_dir = version_dir / self.architecture
        shutil.rmtree(pkg_dir / "partial", ignore_errors=True)
        for name in ("Packages", "Packages.gz", "lock"):
            for base in (pkg_dir, version_dir):
                stale = base / name
                if stale.exists() and not stale.is_dir():
                    stale.unlink()

    def scan_packages(self, version_dir: Path) -> str:
        """dpkg-scanpackages 로 Packages 내용 생성"""
        result = self.runner.run(
            ["dpkg-scanpackages", self.architecture, "/dev/null"],
            cwd=str(version_dir),
        )
        if result.returncode != 0:
            raise MirrorError(f"dpkg-scanpackages failed: {(result.stderr or '').strip()}")
        return result.stdout

    def regenerate(self, version_dir: Path, now: Optional[datetime] = None) -> IndexDescriptor:
        """인덱스와 Release 재생성

        Raises:
            EmptyMirrorError: .deb 가 하나도 없는 경우
        """
        version_dir = Path(version_dir)
        self.logger.info("Generating repository metadata...")
        self._clean(version_dir)

        artifacts = list_artifacts(version_dir / self.architecture)
        if not artifacts:
            raise EmptyMirrorError(f"No .deb packages found in {version_dir / self.architecture}")

        packages_text = self.scan_packages(version_dir)
        packages = version_dir / "Packages"
        packages.write_text(packages_text, encoding="utf-8")
        packages_gz = version_dir / "Packages.gz"
        gzip_file(packages, packages_gz)

        package_count = sum(1 for line in packages_text.splitlines() if line.startswith("Package:"))
        self.logger.info(f"  Generated Packages.gz with {package_count} packages")

        binary_dir = self.binary_dir(version_dir)
        binary_dir.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(packages, binary_dir / "Packages")
        shutil.copyfile(packages_gz, binary_dir / "Packages.gz")

        now = now or datetime.now(timezone.utc)
        valid_until = now + timedelta(days=self.config.release.valid_days)

        # 평면 레이아웃: <version>/Release
        flat_entries = [self._entry(version_dir, name) for name in ("Packages", "Packages.gz")]
        flat_release = version_dir / "Release"
        self.write_release(flat_release, flat_entries, now, valid_until)

        # dists 레이아웃: <version>/dists/stable/Release
        dists_dir = self.dists_dir(version_dir)
        dists_entries = [
            self._entry(dists_dir, str((binary_dir / name).relative_to(dists_dir)))
            for name in ("Packages", "Packages.gz")
        ]
        dists_release = dists_dir / "Release"
        self.write_release(dists_release, dists_entries, now, valid_until)

        return IndexDescriptor(
            version_dir=version_dir,
            artifact_count=len(artifacts),
            package_count=package_count,
            date=now,
            valid_until=valid_until,
            release_files=[flat_release, dists_release],
            entries=flat_entries + dists_entries,
        )

    def _entry(self, base: Path, relative: str) -> IndexEntry:
        path = base / relative
        return IndexEntry(path=relative, size=path.stat().st_size, hashes=file_hashes(path))

    def render_release(self, entries: List[IndexEntry], now: datetime, valid_until: datetime) -> str:
        release = self.config.release
        return RELEASE_TEMPLATE.render(
            origin=release.origin,
            label=release.label,
            suite=release.suite,
            codename=release.codename,
            architecture=self.architecture,
            component=release.component,
            description=release.description,
            date=release_date(now),
            valid_until=release_date(valid_until),
            algorithms=HASH_ALGORITHMS,
            entries=entries,
        )

    def write_release(self, path: Path, entries: List[IndexEntry], now: datetime, valid_until: datetime):
        path.write_text(self.render_release(entries, now, valid_until), encoding="utf-8")
        self.logger.debug(f"  Wrote {path}")
