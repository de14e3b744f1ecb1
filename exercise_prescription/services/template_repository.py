"""템플릿 저장소

부위별 JSON 파일({"_metadata": {...}, "templates": [...]})을 읽어
레코드 단위로 검증한다. 잘못된 레코드는 격리(quarantine)하고
일괄 검증 리포트로 보고하며, 전체 로드는 실패하지 않는다.
"""

from collections import Counter
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional, Tuple
import json
import logging

from pydantic import BaseModel, Field
from langsmith import traceable

from exercise_prescription.config import PrescriptionSettings, settings
from exercise_prescription.exceptions import TemplateNotFoundError, TemplateRecordError
from exercise_prescription.models.template import ExerciseTemplate, parse_template_record

logger = logging.getLogger(__name__)


class ContentError(BaseModel):
    """격리된 레코드의 내용 오류"""

    template_id: str = Field(..., description="템플릿 ID (없으면 위치 표기)")
    source: str = Field(..., description="원본 파일 또는 입력 이름")
    field: str = Field(..., description="문제 필드")
    message: str = Field(..., description="오류 내용")

    def __str__(self) -> str:
        return f"{self.source} [{self.template_id}] {self.field}: {self.message}"


class ValidationReport(BaseModel):
    """일괄 검증 리포트"""

    sources: List[str] = Field(default_factory=list, description="읽은 파일")
    loaded: int = Field(default=0, description="로드된 템플릿 수")
    errors: List[ContentError] = Field(default_factory=list, description="격리된 레코드")

    @property
    def quarantined_ids(self) -> List[str]:
        return sorted({e.template_id for e in self.errors})

    @property
    def ok(self) -> bool:
        return not self.errors

    def summary(self) -> str:
        return (
            f"템플릿 {self.loaded}개 로드, {len(self.errors)}개 격리 "
            f"(파일 {len(self.sources)}개)"
        )


class TemplateRepository:
    """검증된 템플릿의 프로세스 수명 캐시"""

    def __init__(
        self,
        templates_dir: Optional[Path] = None,
        config: Optional[PrescriptionSettings] = None,
    ):
        """
        Args:
            templates_dir: 템플릿 JSON 디렉토리 (기본값: 설정값)
            config: 기본값 설정 (레거시 레코드 보정용)
        """
        self._config = config or settings
        self.templates_dir = Path(templates_dir or self._config.templates_dir)
        self._templates: Dict[str, ExerciseTemplate] = {}
        self._quarantined: Dict[str, ContentError] = {}
        self._report = ValidationReport()
        self._loaded = False
        self._records: Optional[List[Tuple[str, Mapping]]] = None

    @classmethod
    def from_records(
        cls,
        records: Iterable[Mapping],
        source: str = "<records>",
        config: Optional[PrescriptionSettings] = None,
    ) -> "TemplateRepository":
        """호스트가 전달한 레코드로 저장소 생성"""
        repo = cls(config=config)
        repo._records = [(source, record) for record in records]
        repo._load()
        return repo

    @property
    def report(self) -> ValidationReport:
        self._ensure_loaded()
        return self._report

    def reload(self) -> ValidationReport:
        """콘텐츠 재배포 시 캐시 재구성"""
        self._loaded = False
        return self.report

    def _ensure_loaded(self) -> None:
        if not self._loaded:
            self._load()

    def _read_sources(self) -> Tuple[List[Tuple[str, Mapping]], List[ContentError]]:
        """디렉토리의 모든 JSON 파일에서 (출처, 레코드) 목록과 파일 단위 오류 읽기"""
        if self._records is not None:
            return list(self._records), []

        if not self.templates_dir.exists():
            raise FileNotFoundError(f"템플릿 디렉토리를 찾을 수 없습니다: {self.templates_dir}")

        records = []
        errors = []
        for path in sorted(self.templates_dir.glob("*.json")):
            try:
                with open(path, "r", encoding="utf-8") as f:
                    raw_data = json.load(f)
            except ValueError as e:
                errors.append(self._file_error(path.name, f"JSON 파싱 실패: {e}"))
                continue

            templates = raw_data.get("templates", raw_data) if isinstance(raw_data, dict) else raw_data

            # {id: record} 형식도 허용
            if isinstance(templates, dict):
                items = []
                for template_id, record in templates.items():
                    if template_id.startswith("_"):  # _metadata 등 제외
                        continue
                    if isinstance(record, dict):
                        record = {"id": template_id, **record}
                    items.append(record)
                templates = items

            if not isinstance(templates, list):
                errors.append(
                    self._file_error(path.name, f"템플릿 목록이 필요합니다: {type(templates).__name__}")
                )
                continue

            records.extend((path.name, record) for record in templates)
        return records, errors

    def _file_error(self, source: str, message: str) -> ContentError:
        return ContentError(template_id=source, source=source, field="file", message=message)

    @traceable(name="template_repository_load")
    def _load(self) -> None:
        sources, file_errors = self._read_sources()
        report = ValidationReport(
            sources=sorted({source for source, _ in sources} | {e.source for e in file_errors}),
            errors=file_errors,
        )
        parsed: List[Tuple[str, ExerciseTemplate]] = []

        for index, (source, record) in enumerate(sources):
            try:
                parsed.append(
                    (source, parse_template_record(record, self._config, f"{source}#{index}"))
                )
            except TemplateRecordError as e:
                report.errors.append(
                    ContentError(
                        template_id=e.template_id, source=source, field=e.field, message=e.message
                    )
                )

        # 중복 ID는 모두 격리 (우선순위를 추측하지 않음)
        counts = Counter(template.id for _, template in parsed)
        templates: Dict[str, ExerciseTemplate] = {}
        for source, template in parsed:
            if counts[template.id] > 1:
                report.errors.append(
                    ContentError(
                        template_id=template.id,
                        source=source,
                        field="id",
                        message=f"중복 ID ({counts[template.id]}회 정의됨)",
                    )
                )
                continue
            templates[template.id] = template

        report.loaded = len(templates)
        self._templates = templates
        self._quarantined = {e.template_id: e for e in report.errors}
        self._report = report
        self._loaded = True

        for error in report.errors:
            logger.warning(f"템플릿 격리: {error}")
        if report.errors:
            logger.warning(report.summary())
        else:
            logger.info(report.summary())

    def get(self, template_id: str) -> ExerciseTemplate:
        """
        ID로 템플릿 조회

        Raises:
            TemplateNotFoundError: 존재하지 않거나 격리된 ID
        """
        self._ensure_loaded()
        try:
            return self._templates[template_id]
        except KeyError:
            raise TemplateNotFoundError(
                template_id, quarantined=template_id in self._quarantined
            ) from None

    def by_region(self, body_region: str) -> List[ExerciseTemplate]:
        """부위별 템플릿 (ID 순)"""
        self._ensure_loaded()
        return sorted(
            (t for t in self._templates.values() if t.body_region == body_region),
            key=lambda t: t.id,
        )

    def all(self) -> List[ExerciseTemplate]:
        self._ensure_loaded()
        return sorted(self._templates.values(), key=lambda t: t.id)

    def ids(self) -> List[str]:
        self._ensure_loaded()
        return sorted(self._templates)

    def __len__(self) -> int:
        self._ensure_loaded()
        return len(self._templates)

    def __contains__(self, template_id: object) -> bool:
        self._ensure_loaded()
        return template_id in self._templates


_default_repository: Optional[TemplateRepository] = None


def get_template_repository() -> TemplateRepository:
    """내장 템플릿 저장소 (프로세스당 1회 로드)"""
    global _default_repository
    if _default_repository is None:
        _default_repository = TemplateRepository()
    return _default_repository
