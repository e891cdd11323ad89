"""
GPG 키 관리 및 저장소 서명

- 키는 한 번 생성해서 계속 재사용한다 (클라이언트는 Release.key 를 한 번만 신뢰)
- 기존 키가 min_key_length 보다 약하면 재생성
- 모든 gpg 작업은 임시 GNUPGHOME 에서 수행
"""

import os
import shutil
import tempfile
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterator, List, Optional, Tuple

from jinja2 import Template

from .errors import SigningError
from .logger import get_logger

KEYGEN_TEMPLATE = Template(
    """%echo Generating Air-Gap Mirror GPG key ({{ key_length }}-bit {{ key_type }})
Key-Type: {{ key_type }}
Key-Length: {{ key_length }}
Key-Usage: sign
Name-Real: {{ name }}
Name-Email: {{ email }}
Expire-Date: {{ expire }}
%no-protection
%commit
%echo Done
""",
    keep_trailing_newline=True,
)


@dataclass
class KeyPair:
    """서명 키 정보"""
    fingerprint: str
    bits: int
    private_key_path: Path
    public_key_path: Path
    keyring_path: Path
    generated: bool = False


@dataclass
class SignResult:
    """서명 결과"""
    success: bool
    message: str = ""
    signed: List[Path] = field(default_factory=list)


def parse_colon_listing(output: str) -> List[Tuple[str, int]]:
    """gpg --with-colons 출력에서 (fingerprint, bits) 추출

    pub 레코드의 3번째 필드가 키 길이, 바로 다음 fpr 레코드의 10번째 필드가 지문이다.
    """
    keys = []
    bits: Optional[int] = None
    for line in output.splitlines():
        fields = line.split(":")
        if fields[0] in ("pub", "sec"):
            try:
                bits = int(fields[2])
            except (IndexError, ValueError):
                bits = 0
        elif fields[0] == "fpr" and bits is not None and len(fields) > 9:
            keys.append((fields[9], bits))
            bits = None
    return keys


class GPGSigner:
    """GPG 키 생성/재사용 및 Release 서명"""

    def __init__(self, gpg_config, runner):
        self.config = gpg_config
        self.runner = runner
        self.logger = get_logger()

    @property
    def private_key_path(self) -> Path:
        return Path(self.config.private_key_path)

    @property
    def public_key_path(self) -> Path:
        return Path(self.config.public_key_path)

    @property
    def keyring_path(self) -> Path:
        return Path(self.config.keyring_path)

    @contextmanager
    def _gnupg_home(self) -> Iterator[dict]:
        """임시 GNUPGHOME (종료 시 agent 종료 후 삭제)"""
        home = tempfile.mkdtemp(prefix="gpg_home_")
        env = {"GNUPGHOME": home}
        try:
            yield env
        finally:
            if self.runner.which("gpgconf"):
                self.runner.run(["gpgconf", "--kill", "gpg-agent"], env=env)
            shutil.rmtree(home, ignore_errors=True)

    def _gpg(self, args: List[str], env: dict, **kwargs):
        return self.runner.run(["gpg", "--batch", "--no-tty"] + args, env=env, **kwargs)

    def _import_private_key(self, env: dict) -> Optional[Tuple[str, int]]:
        """개인 키를 가져와 (fingerprint, bits) 반환"""
        if not self.private_key_path.is_file() or self.private_key_path.stat().st_size == 0:
            return None
        result = self._gpg(["--import", str(self.private_key_path)], env)
        if result.returncode != 0:
            self.logger.warning(f"Existing private key could not be imported: {(result.stderr or '').strip()}")
            return None
        listing = self._gpg(["--list-secret-keys", "--with-colons"], env)
        keys = parse_colon_listing(listing.stdout or "")
        return keys[0] if keys else None

    def inspect(self) -> Optional[KeyPair]:
        """기존 키 정보 (없으면 None)"""
        with self._gnupg_home() as env:
            key = self._import_private_key(env)
        if key is None:
            return None
        return self._keypair(key[0], key[1], generated=False)

    def _keypair(self, fingerprint: str, bits: int, generated: bool) -> KeyPair:
        return KeyPair(
            fingerprint=fingerprint,
            bits=bits,
            private_key_path=self.private_key_path,
            public_key_path=self.public_key_path,
            keyring_path=self.keyring_path,
            generated=generated,
        )

    def ensure_key(self) -> KeyPair:
        """서명 키 확보 (있으면 재사용, 없거나 약하면 생성)

        Raises:
            SigningError: 키 생성 실패 또는 키 파일 기록 실패
        """
        self.logger.info("Checking GPG signing key...")
        try:
            return self._ensure_key()
        except OSError as e:
            raise SigningError(f"Failed to write GPG key files: {e}") from e

    def _ensure_key(self) -> KeyPair:
        with self._gnupg_home() as env:
            existing = self._import_private_key(env)
            if existing is not None:
                fingerprint, bits = existing
                if bits >= self.config.min_key_length:
                    self.logger.info(f"  GPG private key already exists ({bits}-bit), skipping generation")
                    if not self.public_key_path.is_file() or not self.keyring_path.is_file():
                        self._export_public(fingerprint, env)
                    return self._keypair(fingerprint, bits, generated=False)
                self.logger.warning(
                    f"Existing key is {bits}-bit (< {self.config.min_key_length}), "
                    f"regenerating as {self.config.key_length}-bit"
                )

        with self._gnupg_home() as env:
            return self._generate(env)

    def _generate(self, env: dict) -> KeyPair:
        self.logger.info(f"Generating {self.config.key_length}-bit {self.config.key_type} GPG key...")
        batch = KEYGEN_TEMPLATE.render(
            key_type=self.config.key_type,
            key_length=self.config.key_length,
            name=self.config.key_name,
            email=self.config.email(),
            expire=self.config.key_expire,
        )
        batch_file = Path(env["GNUPGHOME"]) / "keygen.batch"
        batch_file.write_text(batch, encoding="utf-8")

        result = self._gpg(["--generate-key", str(batch_file)], env)
        if result.returncode != 0:
            raise SigningError(f"Failed to generate GPG key: {(result.stderr or '').strip()}")

        listing = self._gpg(["--list-secret-keys", "--with-colons"], env)
        keys = parse_colon_listing(listing.stdout or "")
        if not keys:
            raise SigningError("Failed to get key ID after generation")
        fingerprint, bits = keys[0]

        for path in (self.private_key_path, self.public_key_path, self.keyring_path):
            path.parent.mkdir(parents=True, exist_ok=True)

        secret = self._gpg(["--export-secret-keys", "--armor", fingerprint], env)
        if secret.returncode != 0 or not secret.stdout:
            raise SigningError("Failed to export private key")
        # 0600 으로 생성한 뒤 기록
        fd = os.open(self.private_key_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(secret.stdout)
        os.chmod(self.private_key_path, 0o600)

        self._export_public(fingerprint, env)

        self.logger.info("GPG key generated successfully:")
        self.logger.info(f"  Key ID: {fingerprint}")
        self.logger.info(f"  Public key: {self.public_key_path}")
        self.logger.info(f"  Keyring: {self.keyring_path}")
        return self._keypair(fingerprint, bits, generated=True)

    def _export_public(self, fingerprint: str, env: dict):
        """armored 공개 키와 바이너리 keyring 내보내기"""
        for path in (self.public_key_path, self.keyring_path):
            path.parent.mkdir(parents=True, exist_ok=True)

        armored = self._gpg(["--export", "--armor", fingerprint], env)
        if armored.returncode != 0 or not armored.stdout:
            raise SigningError("Failed to export public key")
        self.public_key_path.write_text(armored.stdout, encoding="utf-8")
        os.chmod(self.public_key_path, 0o644)

        binary = self._gpg(["--export", fingerprint], env, text=False)
        if binary.returncode != 0 or not binary.stdout:
            raise SigningError("Failed to export binary keyring")
        self.keyring_path.write_bytes(binary.stdout)
        os.chmod(self.keyring_path, 0o644)

    def sign(self, version_dir: Path, keypair: KeyPair, release_files: Optional[List[Path]] = None) -> SignResult:
        """Release 파일마다 InRelease / Release.gpg 생성, Release.key 복사"""
        version_dir = Path(version_dir)
        if release_files is None:
            release_files = [p for p in (version_dir / "Release",) if p.is_file()]
            release_files += sorted(version_dir.glob("dists/*/Release"))
        if not release_files:
            return SignResult(False, "Release 파일 없음")

        signed: List[Path] = []
        with self._gnupg_home() as env:
            imported = self._import_private_key(env)
            if imported is None or imported[0] != keypair.fingerprint:
                return SignResult(False, "서명 키를 가져올 수 없음")

            for release in release_files:
                directory = release.parent
                in_release = directory / "InRelease"
                detached = directory / "Release.gpg"

                clear = self._gpg(
                    ["--yes", "--default-key", keypair.fingerprint,
                     "--clear-sign", "--output", str(in_release), str(release)],
                    env,
                )
                detach = self._gpg(
                    ["--yes", "--default-key", keypair.fingerprint,
                     "--detach-sign", "--armor", "--output", str(detached), str(release)],
                    env,
                )
                if clear.returncode != 0 or detach.returncode != 0:
                    stderr = (clear.stderr or "") + (detach.stderr or "")
                    self.logger.error(f"Failed to sign {release}: {stderr.strip()}")
                    return SignResult(False, f"{release.name} 서명 실패", signed)

                if keypair.public_key_path.is_file():
                    try:
                        shutil.copyfile(keypair.public_key_path, directory / "Release.key")
                    except OSError as e:
                        return SignResult(False, f"Release.key 복사 실패: {e}", signed)
                signed.extend([in_release, detached])

        self.logger.info("Repository signed successfully")
        return SignResult(True, "서명 완료", signed)

    def verify(self, release: Path, signature: Path, keyring: Optional[Path] = None) -> bool:
        """gpgv 로 분리 서명 검증"""
        keyring = keyring or self.keyring_path
        result = self.runner.run(["gpgv", "--keyring", str(keyring), str(signature), str(release)])
        return result.returncode == 0
