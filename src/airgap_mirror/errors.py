"""
예외 정의
빌드를 중단시켜야 하는 치명적 오류만 예외로 표현한다
"""


class MirrorError(Exception):
    """미러 빌드 기본 예외"""


class RequirementsError(MirrorError):
    """필수 외부 도구 누락"""

    def __init__(self, missing):
        self.missing = list(missing)
        super().__init__(f"Missing required tools: {', '.join(self.missing)}")


class EmptyMirrorError(MirrorError):
    """패키지가 하나도 없는 미러"""


class SigningError(MirrorError):
    """GPG 키 생성 또는 서명 실패"""


class LockError(MirrorError):
    """다른 빌드가 이미 실행 중"""
