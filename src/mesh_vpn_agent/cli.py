"""
CLI 메인 인터페이스
Click 및 Rich 기반 사용자 친화적 CLI
"""

import os
import sys
import click
from typing import Optional
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from . import __version__
from .agent import AgentInstaller, AgentLocator, ServiceManager
from .config import Config, ConfigError
from .diagnostics import DiagnosticsExporter
from .logger import init_logger, get_logger
from .models import EXIT_CONFIG_ERROR, EXIT_PRIVILEGE_REQUIRED, ConvergeOptions, ConvergenceResult
from .network import NetworkGate
from .orchestrator import converge as run_convergence
from .status import StatusProbe
from .verifier import ConvergenceVerifier

console = Console()


def is_admin() -> bool:
    """관리자(root) 권한 확인"""
    return hasattr(os, "geteuid") and os.geteuid() == 0


def load_config(config_path: Optional[str]) -> Config:
    """설정 로드 및 검증. 오류 시 종료 코드 2"""
    try:
        cfg = Config(config_path)
        cfg.validate()
    except (ConfigError, OSError, ValueError) as e:
        console.print(f"[red]✗ 설정 파일 오류: {str(e)}[/red]")
        sys.exit(EXIT_CONFIG_ERROR)
    return cfg


def show_summary(result: ConvergenceResult, log_files: dict):
    """실행 결과 요약 표시"""
    console.print("\n" + "=" * 60)
    console.print("[bold]실행 결과 요약[/bold]")
    console.print("=" * 60 + "\n")

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("#", style="cyan", width=4)
    table.add_column("결과", width=10)
    table.add_column("분류", width=20)
    table.add_column("소요(초)", width=10)

    for attempt in result.attempts:
        color = "green" if attempt.success else "red"
        table.add_row(
            str(attempt.index),
            f"[{color}]{'성공' if attempt.success else '실패'}[/{color}]",
            attempt.error_kind.value if attempt.error_kind else "-",
            f"{attempt.duration:.1f}",
        )
    if result.attempts:
        console.print(table)

    if result.recovery_actions:
        console.print("\n[bold]복구 동작:[/bold]")
        for record in result.recovery_actions:
            suffix = " (준비 대기 초과)" if record.trigger == record.READINESS else ""
            console.print(f"  • #{record.attempt_index} {record.error_kind.value} → {record.action.value}{suffix}")

    console.print(f"\n[bold]상태 전이:[/bold] {' → '.join(result.transitions)}")
    if result.diagnostics_path:
        console.print(f"[bold]진단 파일:[/bold] {result.diagnostics_path}")

    console.print(f"\n[bold]로그 파일:[/bold]")
    console.print(f"  Main: {log_files['main_log']}")
    console.print(f"  Error: {log_files['error_log']}")


@click.group()
@click.version_option(version=__version__)
def cli():
    """Mesh VPN Agent

    로컬 메시 VPN 에이전트를 관리 서버에 등록하고 연결 상태를 보장합니다.
    """
    pass


@cli.command()
@click.option('--config', '-c', type=click.Path(exists=True), help='설정 파일 경로')
@click.option('--setup-key', '-k', envvar='MESH_VPN_SETUP_KEY', help='Setup Key (환경 변수 MESH_VPN_SETUP_KEY)')
@click.option('--management-url', '-m', help='관리 서버 URL')
@click.option('--force-full-reset', is_flag=True, help='기존 상태를 모두 삭제하고 재등록')
@click.option('--max-attempts', type=click.IntRange(min=1), help='최대 등록 시도 횟수')
@click.option('--daemon-wait', type=click.IntRange(min=1), help='데몬 준비 대기 시간 (초)')
@click.option('--verify-wait', type=click.IntRange(min=1), help='연결 검증 대기 시간 (초)')
@click.option('--no-install', is_flag=True, help='에이전트가 없어도 설치하지 않음')
@click.option('--debug', is_flag=True, help='디버그 모드')
def converge(config, setup_key, management_url, force_full_reset, max_attempts,
             daemon_wait, verify_wait, no_install, debug):
    """에이전트를 등록하고 연결 상태로 수렴"""
    cfg = load_config(config)
    if management_url:
        cfg.management.url = management_url
    if setup_key:
        cfg.management.setup_key = setup_key

    if not is_admin():
        console.print("[red]오류: 이 명령은 root 권한이 필요합니다.[/red]")
        console.print("[yellow]sudo mesh-vpn-agent converge ... 로 실행해주세요.[/yellow]")
        sys.exit(EXIT_PRIVILEGE_REQUIRED)

    init_logger(cfg.logging.log_dir, cfg.logging.log_level, debug, cfg.logging.keep_log_files)
    logger = get_logger()
    logger.info(f"Starting converge command (debug={debug}, force_full_reset={force_full_reset})")

    console.print(Panel.fit(
        "[bold cyan]Mesh VPN Agent[/bold cyan]\n"
        f"관리 서버: {cfg.management.url}",
        border_style="cyan"
    ))

    handle = AgentLocator(cfg.agent).detect()
    fresh_install = False
    if handle is None and not no_install:
        console.print(f"[yellow]{cfg.agent.binary} 클라이언트가 설치되어 있지 않습니다.[/yellow]")
        success, msg = AgentInstaller(cfg.agent).install()
        if success:
            handle = AgentLocator(cfg.agent).detect()
            fresh_install = handle is not None
        else:
            logger.error(f"Agent installation failed: {msg}")

    options = ConvergeOptions(
        force_full_reset=force_full_reset,
        max_attempts=max_attempts,
        daemon_wait_seconds=daemon_wait,
        verify_wait_seconds=verify_wait,
        fresh_install=fresh_install,
    )
    result = run_convergence(cfg.management.setup_key or None, cfg.management.url,
                             options, cfg, handle)

    show_summary(result, logger.get_log_files())
    if result.success:
        console.print("\n[bold green]✓ 수렴 완료![/bold green]")
    sys.exit(result.exit_code)


@cli.command()
@click.option('--config', '-c', type=click.Path(exists=True), help='설정 파일 경로')
@click.option('--debug', is_flag=True, help='디버그 모드')
def status(config, debug):
    """에이전트 상태 1회 조회"""
    cfg = load_config(config)
    init_logger(cfg.logging.log_dir, cfg.logging.log_level, debug, cfg.logging.keep_log_files)

    handle = AgentLocator(cfg.agent).detect()
    if handle is None:
        console.print(f"[red]✗ {cfg.agent.binary} 클라이언트를 찾을 수 없습니다.[/red]")
        sys.exit(1)

    probe = StatusProbe(handle, cfg.agent.status_timeout, cfg.convergence.error_markers)
    snapshot = probe.probe()
    verifier = ConvergenceVerifier(probe, require_signal=cfg.convergence.require_signal)
    missing = verifier.missing_indicators(snapshot)
    service_state = ServiceManager().query_state(handle.service_name)

    table = Table(title="에이전트 상태")
    table.add_column("항목", style="cyan")
    table.add_column("값")
    table.add_row("서비스", f"{handle.service_name} ({service_state.value})")
    table.add_row("Management", "연결됨" if snapshot.management_connected else "[red]연결 안됨[/red]")
    table.add_row("Signal", "연결됨" if snapshot.signal_connected else "[red]연결 안됨[/red]")
    table.add_row("할당 IP", snapshot.assigned_address or "[red]없음[/red]")
    table.add_row("데몬 응답", "예" if snapshot.daemon_version_present else "[red]아니오[/red]")
    table.add_row("오류 지표", ", ".join(sorted(snapshot.raw_indicators)) or "-")
    table.add_row("조회 방식", snapshot.source)
    console.print(table)

    if missing:
        console.print(f"\n[red]✗ 미충족 지표: {', '.join(missing)}[/red]")
        sys.exit(1)
    console.print("\n[green]✓ 연결 상태 정상[/green]")


@cli.command(name="check-network")
@click.option('--config', '-c', type=click.Path(exists=True), help='설정 파일 경로')
@click.option('--debug', is_flag=True, help='디버그 모드')
def check_network(config, debug):
    """네트워크 사전 점검 1회 수행"""
    cfg = load_config(config)
    init_logger(cfg.logging.log_dir, cfg.logging.log_level, debug, cfg.logging.keep_log_files)

    gate = NetworkGate(cfg.network, cfg.management.url, cfg.management.verify_tls)
    with console.status("[bold green]네트워크 점검 중...[/bold green]"):
        result = gate.evaluate()

    table = Table(title="네트워크 점검 결과")
    table.add_column("구분", style="cyan")
    table.add_column("항목")
    table.add_column("결과")
    for tier, checks in (("필수", result.critical), ("권고", result.advisory)):
        for name, ok in checks.items():
            mark = "[green]✓[/green]" if ok else ("[yellow]?[/yellow]" if ok is None else "[red]✗[/red]")
            table.add_row(tier, name, mark)
    console.print(table)

    for warning in result.warnings:
        console.print(f"[yellow]⚠ {warning}[/yellow]")
    for issue in result.blocking_issues:
        console.print(f"[red]✗ {issue}[/red]")

    sys.exit(0 if result.critical_pass else 1)


@cli.command()
@click.argument('output', type=click.Path(), default='./config.yaml')
def init(output):
    """샘플 설정 파일 생성"""
    cfg = Config()
    cfg.create_sample(output)
    console.print(f"[green]✓ 샘플 설정 파일 생성: {output}[/green]")
    console.print(f"[cyan]설정 파일을 편집한 후 다음 명령어로 실행하세요:[/cyan]")
    console.print(f"[cyan]  sudo mesh-vpn-agent converge --config {output}[/cyan]")


@cli.command()
@click.option('--config', '-c', type=click.Path(exists=True), help='설정 파일 경로')
def validate(config):
    """설정 파일 유효성 검사"""
    cfg = load_config(config)
    console.print("[green]✓ 설정 파일이 유효합니다.[/green]")

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("항목", style="cyan")
    table.add_column("값")

    table.add_row("에이전트", f"{cfg.agent.binary} ({cfg.agent.service_name})")
    table.add_row("관리 서버", cfg.management.url)
    table.add_row("Setup Key", "설정됨" if cfg.management.setup_key else "[red]미설정[/red]")
    table.add_row("최대 시도", str(cfg.convergence.max_attempts))
    table.add_row("데몬 대기", f"{cfg.convergence.daemon_wait_seconds}초")
    table.add_row("검증 대기", f"{cfg.convergence.verify_wait_seconds}초")
    table.add_row("진단 경로", cfg.logging.diagnostics_dir)

    console.print(table)


@cli.command()
@click.option('--config', '-c', type=click.Path(exists=True), help='설정 파일 경로')
@click.option('--limit', type=int, default=10, help='표시할 개수 (기본값: 10)')
def diagnostics(config, limit):
    """저장된 진단 스냅샷 목록"""
    cfg = load_config(config)
    reports = DiagnosticsExporter(cfg.logging.diagnostics_dir).list_reports()

    if not reports:
        console.print("[yellow]진단 스냅샷이 없습니다.[/yellow]")
        return

    table = Table(title="진단 스냅샷")
    table.add_column("파일", style="white")
    for report in reports[:limit]:
        table.add_row(str(report))
    console.print(table)


def main():
    """메인 엔트리 포인트"""
    cli()


if __name__ == '__main__':
    main()
