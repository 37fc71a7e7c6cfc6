"""
Mesh VPN Agent
로컬 메시 VPN 에이전트(NetBird 등)를 관리 서버에 등록하고 연결 상태로 수렴시키는 에이전트

Features:
- 네트워크/데몬 준비 상태 게이트
- 등록 사전 조건 검증
- 오류 분류 및 단계적 복구 정책
- 독립적인 연결 검증
- 실패 시 진단 스냅샷 생성
"""

__version__ = "1.0.0"
__author__ = "DevOps Team"
