"""
외부 명령 실행
LC_ALL=C 고정, 명령 로깅, 타임아웃 지원
"""

import os
import shlex
import shutil
import subprocess
from typing import Dict, List, Optional, Union

from .logger import get_logger


class CommandRunner:
    """subprocess 래퍼 (테스트에서 대체 가능)"""

    def __init__(self, verbose: bool = False):
        self.verbose = verbose
        self.logger = get_logger()

    def which(self, name: str) -> Optional[str]:
        return shutil.which(name)

    def run(
        self,
        cmd: List[str],
        check: bool = False,
        capture: bool = True,
        input: Optional[Union[str, bytes]] = None,
        env: Optional[Dict[str, str]] = None,
        cwd: Optional[str] = None,
        timeout: Optional[int] = None,
        text: bool = True,
    ) -> subprocess.CompletedProcess:
        """명령 실행

        Args:
            cmd: 인자 리스트 (shell 사용 안 함)
            check: 0 이 아닌 종료 코드에서 CalledProcessError 발생
            capture: stdout/stderr 캡처 여부 (False 면 콘솔로 그대로 출력)
            input: stdin 으로 전달할 데이터
            env: 추가 환경 변수
        """
        full_env = os.environ.copy()
        full_env['LC_ALL'] = 'C'
        if env:
            full_env.update(env)

        self.logger.debug(f"$ {' '.join(shlex.quote(str(c)) for c in cmd)}")

        result = subprocess.run(
            [str(c) for c in cmd],
            input=input,
            capture_output=capture,
            env=full_env,
            cwd=cwd,
            timeout=timeout,
            text=text,
            check=False,
        )

        if result.returncode != 0 and capture:
            stderr = result.stderr if isinstance(result.stderr, str) else (result.stderr or b"").decode(errors="ignore")
            self.logger.debug(f"exit {result.returncode}: {stderr.strip()[:500]}")

        if check and result.returncode != 0:
            raise subprocess.CalledProcessError(result.returncode, cmd, result.stdout, result.stderr)

        return result
