"""
Air-Gap Mirror
폐쇄망 Kubernetes 배포를 위한 최소 APT 미러 생성기

Features:
- mmdebstrap 기반 격리 환경에서 패키지 해석 및 다운로드
- 이전 버전 하드링크 캐시 재사용
- 버전 디렉토리 + 심볼릭 링크 기반 원자적 교체
- GPG 서명 (InRelease, Release.gpg)
- 컨테이너 이미지 pull & save
"""

__version__ = "1.0.0"
__author__ = "DevOps Team"
