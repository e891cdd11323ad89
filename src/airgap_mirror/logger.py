"""
로깅 시스템
파일 및 콘솔 로깅, verbose 모드 지원
"""

import logging
import os
from typing import Optional
from rich.logging import RichHandler
from rich.console import Console

console = Console()

DEFAULT_LOG_FILE = "/var/log/airgap-mirror.log"


class MirrorLogger:
    """미러 빌더 로거"""

    def __init__(self, log_file: str = DEFAULT_LOG_FILE, log_level: str = "INFO", verbose: bool = False):
        self.log_file = log_file
        self.log_level = logging.DEBUG if verbose else getattr(logging, log_level.upper())
        self.verbose = verbose

        # 로그 디렉토리 생성
        log_dir = os.path.dirname(log_file)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)

        self.logger = logging.getLogger("airgap_mirror")
        self.logger.setLevel(self.log_level)
        self.logger.propagate = False

        # 기존 핸들러 제거
        for handler in list(self.logger.handlers):
            handler.close()
        self.logger.handlers.clear()

        # 파일 핸들러 (빌드 간 누적)
        file_handler = logging.FileHandler(log_file, mode='a', encoding='utf-8')
        file_handler.setLevel(self.log_level)
        file_formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )
        file_handler.setFormatter(file_formatter)
        self.logger.addHandler(file_handler)

        # 콘솔 핸들러 (Rich)
        rich_handler = RichHandler(
            console=console,
            rich_tracebacks=True,
            show_time=True,
            show_path=verbose,
            log_time_format="[%Y-%m-%d %H:%M:%S]"
        )
        rich_handler.setLevel(self.log_level)
        self.logger.addHandler(rich_handler)

    def debug(self, message: str):
        self.logger.debug(message)

    def info(self, message: str):
        self.logger.info(message)

    def warning(self, message: str):
        self.logger.warning(message)

    def error(self, message: str):
        self.logger.error(message)

    def critical(self, message: str):
        self.logger.critical(message)

    def exception(self, message: str):
        """예외 로그 (트레이스백 포함)"""
        self.logger.exception(message)

    def get_log_files(self) -> dict:
        """로그 파일 경로 반환"""
        return {
            "main_log": self.log_file,
        }


# 글로벌 로거 인스턴스
_logger: Optional[MirrorLogger] = None


def get_logger(log_file: str = DEFAULT_LOG_FILE,
               log_level: str = "INFO",
               verbose: bool = False) -> MirrorLogger:
    """로거 인스턴스 가져오기"""
    global _logger
    if _logger is None:
        _logger = MirrorLogger(log_file, log_level, verbose)
    return _logger


def init_logger(log_file: str, log_level: str, verbose: bool) -> MirrorLogger:
    """로거 초기화"""
    global _logger
    _logger = MirrorLogger(log_file, log_level, verbose)
    return _logger
