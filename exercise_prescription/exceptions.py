"""처방 엔진 예외

임상적으로 정상적인 부적격(거부, 변형 없음)은 예외가 아니라
타입이 있는 결과로 반환한다. 여기의 예외는 프로그래밍 오류와
저장소 충돌에만 사용한다.
"""

from typing import Optional


class PrescriptionError(Exception):
    """처방 엔진 기본 예외"""


class TemplateNotFoundError(PrescriptionError, KeyError):
    """존재하지 않거나 격리된 템플릿 ID"""

    def __init__(self, template_id: str, quarantined: bool = False):
        self.template_id = template_id
        self.quarantined = quarantined
        state = "격리된" if quarantined else "존재하지 않는"
        super().__init__(f"{state} 템플릿: {template_id}")

    def __str__(self) -> str:
        return self.args[0]


class TemplateRecordError(PrescriptionError, ValueError):
    """템플릿 레코드 내용 오류 (필드와 ID 포함)"""

    def __init__(self, template_id: str, field: str, message: str):
        self.template_id = template_id
        self.field = field
        self.message = message
        super().__init__(f"[{template_id}] {field}: {message}")


class VersionConflictError(PrescriptionError):
    """진행 상태 낙관적 동시성 충돌"""

    def __init__(self, key: tuple, expected: int, actual: Optional[int]):
        self.key = key
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"진행 상태 버전 충돌 {key}: 기대 {expected}, 실제 {actual}"
        )


class StateNotFoundError(PrescriptionError, KeyError):
    """진행 상태 없음"""

    def __init__(self, key: tuple):
        self.key = key
        super().__init__(f"진행 상태 없음: {key}")

    def __str__(self) -> str:
        return self.args[0]
