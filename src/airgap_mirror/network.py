"""
외부 저장소 접근성 체크
빌드 전에 Ubuntu 미러와 외부 저장소 서명 키 URL 을 확인한다 (실패해도 경고만)
"""

import socket
from typing import Dict, List, Tuple
from urllib.parse import urlparse

import requests

from .logger import get_logger


class SourceChecker:
    """업스트림 저장소 연결성 확인 클래스"""

    def __init__(self, timeout: int = 10):
        self.timeout = timeout
        self.logger = get_logger()

    def check_dns(self, host: str) -> Tuple[bool, str]:
        """DNS 조회 테스트"""
        try:
            self.logger.debug(f"Checking DNS for {host}...")
            socket.gethostbyname(host)
            return True, f"✓ DNS 조회 성공 ({host})"
        except socket.gaierror:
            self.logger.warning(f"✗ DNS resolution failed for {host}")
            return False, f"✗ DNS 조회 실패 ({host})"

    def check_http(self, url: str) -> Tuple[bool, str]:
        """HTTP/HTTPS 연결 테스트"""
        try:
            self.logger.debug(f"Checking HTTP connection to {url}...")
            response = requests.head(url, timeout=self.timeout, allow_redirects=True)
            if response.status_code == 405:
                response = requests.get(url, timeout=self.timeout, stream=True)
                response.close()
            if response.status_code < 400:
                return True, f"✓ HTTP 연결 성공 ({url})"
            self.logger.warning(f"✗ HTTP error {response.status_code} for {url}")
            return False, f"✗ HTTP 오류: {response.status_code} ({url})"
        except requests.exceptions.SSLError:
            self.logger.warning(f"✗ SSL certificate error for {url}")
            return False, f"✗ SSL 인증서 오류 ({url})"
        except requests.exceptions.Timeout:
            self.logger.warning(f"✗ Connection timeout for {url}")
            return False, f"✗ 타임아웃 ({url})"
        except requests.exceptions.RequestException as e:
            self.logger.warning(f"✗ Connection failed for {url}: {e}")
            return False, f"✗ 연결 실패 ({url})"

    def check_sources(self, urls: List[str]) -> Dict[str, Tuple[bool, str]]:
        """여러 URL 을 확인하고 결과 반환"""
        self.logger.info("Checking upstream sources...")
        results = {}
        for url in urls:
            host = urlparse(url).hostname or ""
            ok, msg = self.check_dns(host) if host else (False, f"✗ 잘못된 URL ({url})")
            if ok:
                ok, msg = self.check_http(url)
            results[url] = (ok, msg)
            if ok:
                self.logger.debug(msg)
        return results
