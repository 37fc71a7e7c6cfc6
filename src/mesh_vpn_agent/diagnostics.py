#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Mesh VPN Agent - 진단 스냅샷 생성기

수렴 실패 시 다음을 저장합니다:
- JSON 스냅샷 (마지막 상태 출력, 서비스 상태, 시도 이력, 복구 이력, 상태 전이)
- Markdown 리포트 (사람이 읽기 위한 요약)
"""

import json
from pathlib import Path
from datetime import datetime
from typing import Dict, List, Optional
from jinja2 import Template

from .logger import get_logger


REPORT_TEMPLATE = """# Mesh VPN Agent 진단 리포트

**생성 시간**: {{ generated_at }}
**최종 상태**: {{ outcome }}
**마지막 오류 분류**: {{ last_error_kind or "N/A" }}
**사유**: {{ reason }}

---

## 서비스 상태

- **서비스**: {{ service_name }}
- **상태**: {{ service_state }}

## 상태 전이

{% for state in transitions %}{{ loop.index }}. {{ state }}
{% endfor %}

## 등록 시도 이력

{% if attempts %}
| # | 결과 | 분류 | 종료 코드 | 소요(초) |
|---|------|------|-----------|----------|
{% for attempt in attempts %}| {{ attempt.index }} | {{ attempt.outcome }} | {{ attempt.error_kind or "-" }} | {{ attempt.exit_code }} | {{ attempt.duration }} |
{% endfor %}
{% else %}
등록 시도 없음
{% endif %}

## 복구 동작

{% if recovery_actions %}
{% for action in recovery_actions %}- 시도 #{{ action.attempt_index }} ({{ action.error_kind }}) → {{ action.action }}{% if action.trigger == "readiness" %} [준비 대기 초과]{% endif %}, 대기 {{ action.wait_seconds }}초{% if not action.succeeded %} (실패){% endif %}
{% endfor %}
{% else %}
복구 동작 없음
{% endif %}

{% if readiness %}
## 준비 상태 점검

{% for name, ok in readiness.items() %}- {{ "✓" if ok else "✗" }} {{ name }}
{% endfor %}
{% endif %}

{% if network %}
## 네트워크 점검

{% for issue in network.blocking_issues %}- ✗ {{ issue }}
{% endfor %}{% for warning in network.warnings %}- ⚠ {{ warning }}
{% endfor %}
{% endif %}

## 마지막 상태 출력

```
{{ last_status_text }}
```
"""


class DiagnosticsExporter:
    """수렴 실패 진단 스냅샷 저장"""

    def __init__(self, output_dir: str):
        """
        Args:
            output_dir: 진단 파일 저장 디렉토리
        """
        self.output_dir = Path(output_dir)
        self.logger = get_logger()

    def export(self, snapshot: Dict) -> Optional[str]:
        """진단 스냅샷 저장

        Args:
            snapshot: 직렬화 가능한 진단 정보 딕셔너리

        Returns:
            Optional[str]: JSON 파일 경로. 저장 실패 시 None
        """
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S_%f")
        data = dict(snapshot)
        data.setdefault("generated_at", datetime.now().isoformat())

        json_file = self.output_dir / f"diagnostics_{timestamp}.json"
        report_file = self.output_dir / f"diagnostics_{timestamp}.md"

        try:
            self.output_dir.mkdir(parents=True, exist_ok=True)
            with open(json_file, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, ensure_ascii=False, default=str)
            with open(report_file, "w", encoding="utf-8") as f:
                f.write(self.render_report(data))
        except OSError as e:
            self.logger.error(f"Failed to write diagnostics to {self.output_dir}: {e}")
            return None

        self.logger.info(f"Diagnostics written: {json_file}")
        return str(json_file)

    def render_report(self, data: Dict) -> str:
        """Markdown 리포트 렌더링"""
        context = {
            "generated_at": data.get("generated_at", ""),
            "outcome": data.get("outcome", "Failed"),
            "last_error_kind": data.get("last_error_kind"),
            "reason": data.get("reason", ""),
            "service_name": data.get("service_name", ""),
            "service_state": data.get("service_state", "Unknown"),
            "transitions": data.get("transitions", []),
            "attempts": data.get("attempts", []),
            "recovery_actions": data.get("recovery_actions", []),
            "readiness": data.get("readiness") or {},
            "network": data.get("network") or {},
            "last_status_text": data.get("last_status_text") or "(없음)",
        }
        return Template(REPORT_TEMPLATE).render(**context)

    def list_reports(self) -> List[Path]:
        """저장된 진단 스냅샷 목록 (최신순)"""
        if not self.output_dir.exists():
            return []
        return sorted(self.output_dir.glob("diagnostics_*.json"), reverse=True)
