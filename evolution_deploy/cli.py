import os
import sys

import click

from .compose import write_compose_file
from .config import load_env_files, DeployConfig
from .docker_ops import container_status
from .logging_utils import setup_logging, get_logger
from .orchestrator import deploy_all, plan_all, check_all


logger = get_logger(__name__)


@click.group()
@click.option(
    "-C",
    "--chdir",
    "chdir",
    type=click.Path(file_okay=False, dir_okay=True, exists=True),
    default=".",
    help="작업 디렉토리 (기본: 현재 디렉토리). .env/.env.deploy 와 compose 파일 위치.",
)
@click.option(
    "-v",
    "--verbose",
    count=True,
    help="로그 레벨을 DEBUG로 올립니다. (-v 가 많을수록 더 자세한 로그)",
)
@click.pass_context
def main(ctx: click.Context, chdir: str, verbose: int) -> None:
    """Evolution API + PostgreSQL + Redis 를 GCP VM 에 배포하는 CLI"""
    setup_logging(verbose)
    ctx.ensure_object(dict)
    ctx.obj["chdir"] = chdir
    ctx.obj["verbose"] = verbose


def _load_config_from_ctx(ctx: click.Context) -> DeployConfig:
    base_dir: str = ctx.obj["chdir"]
    load_env_files(base_dir)
    cfg = DeployConfig.from_env()
    logger.debug("Config loaded: %s", cfg)
    return cfg


def _load_config_or_exit(ctx: click.Context) -> DeployConfig:
    try:
        return _load_config_from_ctx(ctx)
    except Exception as e:  # noqa: BLE001
        click.echo(f"[ERROR] 설정 로드 실패: {e}", err=True)
        sys.exit(1)


@main.command()
@click.pass_context
def plan(ctx: click.Context) -> None:
    """현재 설정, 필요한 secret, 실행 단계, 컨테이너 환경변수 키를 출력 (GCP/Docker 호출 없음)"""
    cfg = _load_config_or_exit(ctx)
    click.echo(plan_all(cfg))


@main.command(name="deploy")
@click.option("--skip-pull", is_flag=True, help="docker pull 단계를 건너뜁니다.")
@click.option(
    "--show-api-key",
    is_flag=True,
    help="마지막 요약에 API Key 를 마스킹 없이 출력합니다.",
)
@click.pass_context
def deploy(ctx: click.Context, skip_pull: bool, show_api_key: bool) -> None:
    """secret 로드 → 환경변수 구성 → compose 생성 → 컨테이너 기동 → 상태 확인"""
    cfg = _load_config_or_exit(ctx)
    base_dir: str = ctx.obj["chdir"]

    click.echo("========================================")
    click.echo("  EVOLUTION API - 배포 시작")
    click.echo("========================================")

    try:
        summary, has_failures = deploy_all(
            cfg,
            base_dir=base_dir,
            skip_pull=skip_pull,
            show_api_key=show_api_key,
        )
    except Exception as e:  # noqa: BLE001
        logger.exception("배포 중 오류 발생")
        click.echo(f"[ERROR] 배포 실패: {e}", err=True)
        sys.exit(1)

    click.echo(summary)

    if has_failures:
        sys.exit(1)


@main.command()
@click.pass_context
def render(ctx: click.Context) -> None:
    """
    docker-compose.yaml 만 생성한다. 파일에는 ${VAR} 참조만 들어가므로 secret 이 필요 없다.
    """
    cfg = _load_config_or_exit(ctx)
    path = write_compose_file(cfg, ctx.obj["chdir"])
    click.echo(path)


@main.command()
@click.pass_context
def status(ctx: click.Context) -> None:
    """evolution_api / postgres / redis 컨테이너 상태를 출력"""
    try:
        click.echo(container_status())
    except Exception as e:  # noqa: BLE001
        click.echo(f"[ERROR] 상태 조회 실패: {e}", err=True)
        sys.exit(1)


@main.command()
@click.pass_context
def init(ctx: click.Context) -> None:
    """
    현재 디렉토리에 .env.deploy 템플릿을 생성한다. 이미 있으면 건드리지 않는다.
    """
    from importlib import resources

    base_dir: str = ctx.obj["chdir"]
    target = os.path.join(base_dir, ".env.deploy")
    if os.path.exists(target):
        click.echo(".env.deploy 이(가) 이미 존재하여 건너뜀")
        return
    try:
        template = resources.files("evolution_deploy.examples").joinpath("env.deploy.example")
        with template.open("r", encoding="utf-8") as src, open(target, "w", encoding="utf-8") as dst:
            dst.write(src.read())
        click.echo(".env.deploy 템플릿을 생성했습니다.")
    except FileNotFoundError:
        click.echo("템플릿 env.deploy.example 을(를) 패키지에서 찾을 수 없습니다.", err=True)
        sys.exit(1)


@main.command()
@click.option(
    "-a",
    "--all",
    "show_all",
    is_flag=True,
    help="모든 체크 항목의 상세 상태를 출력합니다. (기본은 이슈만 요약)",
)
@click.pass_context
def check(ctx: click.Context, show_all: bool) -> None:
    """
    배포 전에 의존성/Secret Manager/외부 IP 상태를 점검한다.
    (secret 값은 읽지 않고, 컨테이너도 건드리지 않는다)
    """
    cfg = _load_config_or_exit(ctx)
    base_dir: str = ctx.obj["chdir"]

    try:
        report, has_issues = check_all(cfg, base_dir=base_dir, show_all=show_all)
    except Exception as e:  # noqa: BLE001
        logger.exception("사전 체크 중 오류 발생")
        click.echo(f"[ERROR] 체크 실패: {e}", err=True)
        sys.exit(1)

    click.echo(report)

    # 크리티컬 이슈가 있으면 exit 1 로 종료하여 CI 등에서 감지 가능하게 한다.
    if has_issues:
        sys.exit(1)
