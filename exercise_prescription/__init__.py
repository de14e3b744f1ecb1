"""Exercise Prescription - 재활 운동 처방 엔진

사용 빈도: 매 세션
데이터: 부위별 운동 템플릿 (ankle, core, elbow, hip, knee, lumbar, thoracic)

주요 기능:
- 변형 결정 (자세 × 장비 × 편측성 × 난이도)
- 안전 게이트 (수술 호환성, 수술 후 단계, 통증 상한, 레드플래그, 금기)
- 파라미터 스케일링 (반복/세트/유지/휴식)
- 진행 추적 (진행/유지/퇴행/중단)
- 세션 플랜 조립 (장비/시간 예산)
"""

__version__ = "1.0.0"
