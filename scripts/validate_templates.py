"""운동 템플릿 일괄 검증 스크립트

템플릿 디렉토리의 모든 JSON을 읽어 격리 리포트를 출력한다.
격리된 레코드가 있으면 종료 코드 1.

사용법:
    PYTHONPATH=. python scripts/validate_templates.py
    PYTHONPATH=. python scripts/validate_templates.py --dir path/to/templates
    PYTHONPATH=. python scripts/validate_templates.py --region knee
"""

import argparse
import sys
from collections import Counter
from datetime import datetime
from pathlib import Path

from dotenv import load_dotenv
load_dotenv(override=True)

from shared.utils import get_logger
from exercise_prescription.services import TemplateRepository

logger = get_logger("validate_templates")


def print_report(repository: TemplateRepository, region: str = None) -> bool:
    """검증 리포트 출력"""
    report = repository.report

    print(f"파일: {', '.join(report.sources) or '(없음)'}")
    print(report.summary())

    templates = repository.by_region(region) if region else repository.all()
    by_region = Counter(t.body_region for t in templates)
    for body_region, count in sorted(by_region.items()):
        print(f"  {body_region}: {count}개")

    if report.errors:
        print("\n격리된 레코드:")
        for error in report.errors:
            print(f"  - {error}")

    legacy = [t.id for t in templates if not t.safety.progression_criteria.evaluable]
    if legacy:
        print(f"\n자동 진행 불가 (레거시 기준): {', '.join(legacy)}")

    return report.ok


def main():
    parser = argparse.ArgumentParser(description="운동 템플릿 일괄 검증")
    parser.add_argument("--dir", type=Path, default=None, help="템플릿 디렉토리")
    parser.add_argument("--region", default=None, help="부위 필터 (출력용)")
    args = parser.parse_args()

    print(f"=== 템플릿 검증 시작 ({datetime.now()}) ===")

    try:
        repository = TemplateRepository(templates_dir=args.dir)
        ok = print_report(repository, args.region)
    except FileNotFoundError as e:
        logger.error(str(e))
        sys.exit(2)

    print(f"\n=== 검증 {'통과' if ok else '실패'} ===")
    sys.exit(0 if ok else 1)


if __name__ == "__main__":
    main()
