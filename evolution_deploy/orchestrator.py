from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from .config import DeployConfig
from .logging_utils import get_logger
from . import (
    compose,
    dependencies,
    docker_ops,
    environment,
    gcp_metadata,
    gcp_secrets,
    health,
)


logger = get_logger(__name__)

# 실행 순서 그대로. 앞 단계가 실패하면 뒤 단계는 실행하지 않는다.
ALL_STEPS: List[str] = [
    "dependencies",
    "secrets",
    "network",
    "environment",
    "compose",
    "containers",
    "health",
]


@dataclass
class DeployState:
    base_dir: str = "."
    skip_pull: bool = False
    secrets: gcp_secrets.SecretBundle = field(default_factory=gcp_secrets.SecretBundle)
    vm_ip: Optional[str] = None
    env: Dict[str, str] = field(default_factory=dict)
    compose_file: Optional[str] = None
    api_responding: Optional[bool] = None

    def clear_sensitive(self) -> None:
        self.secrets.clear()
        self.env.clear()


def mask(value: str, visible: int = 4) -> str:
    if not value:
        return "(empty)"
    if len(value) <= visible:
        return "*" * len(value)
    return value[:visible] + "*" * 8


def _run_step(name: str, cfg: DeployConfig, state: DeployState) -> None:
    if name == "dependencies":
        dependencies.ensure_dependencies()
    elif name == "secrets":
        state.secrets = gcp_secrets.load_secrets(cfg)
    elif name == "network":
        state.vm_ip = gcp_metadata.get_vm_ip(cfg)
    elif name == "environment":
        logger.info("환경변수를 구성합니다...")
        state.env = environment.compose_environment(cfg, state.secrets, state.vm_ip or "")
        logger.debug("환경변수: %s", environment.redact(state.env))
        logger.info("✓ 환경변수 %d 개 구성 완료", len(state.env))
    elif name == "compose":
        keys = [k for k in state.env if k != "POSTGRES_PASSWORD"]
        state.compose_file = compose.write_compose_file(cfg, state.base_dir, env_keys=keys)
    elif name == "containers":
        docker_ops.compose_down(cfg, state.base_dir)
        if cfg.prune_volumes:
            docker_ops.prune_volumes()
        if cfg.pull_images and not state.skip_pull:
            docker_ops.pull_images(cfg)
        else:
            logger.info("이미지 pull 을 건너뜁니다.")
        docker_ops.compose_up(cfg, state.env, state.base_dir)
    elif name == "health":
        state.api_responding = health.wait_for_api(cfg)
        if not state.api_responding:
            logs = docker_ops.container_logs(compose.API_SERVICE, tail=cfg.log_tail)
            logger.warning("%s 최근 로그:\n%s", compose.API_SERVICE, logs or "(로그 없음)")
    else:
        raise ValueError(f"알 수 없는 단계입니다: {name}")


def _final_status(cfg: DeployConfig, state: DeployState, show_api_key: bool) -> List[str]:
    url = environment.server_url(cfg, state.vm_ip or "localhost")
    api_key = state.secrets.get("api-key")

    lines: List[str] = []
    lines.append("## Containers")
    lines.append(docker_ops.container_status())
    lines.append("")
    lines.append("## Application")
    lines.append(f"- URL: {url}")
    lines.append(f"- API Key: {api_key if show_api_key else mask(api_key)}")
    lines.append(f"- Swagger: {url}/swagger")
    if state.api_responding is False:
        lines.append("- 상태: API 가 아직 응답하지 않습니다. 잠시 후 로그를 확인하세요.")
    lines.append("")
    lines.append("## Useful commands")
    lines.append(f"- 로그: docker logs {compose.API_SERVICE} -f")
    lines.append("- 재시작: docker compose restart")
    lines.append("- 상태: docker ps")
    lines.append("- 중지: docker compose down")
    return lines


def deploy_all(
    cfg: DeployConfig,
    base_dir: str = ".",
    skip_pull: bool = False,
    show_api_key: bool = False,
) -> tuple[str, bool]:
    """
    단계별 배포를 순서대로 실행한다. 처음 실패한 단계에서 멈춘다.

    Returns:
        summary: 사람이 읽기 좋은 텍스트 요약
        has_failures: 실패한 단계가 있는지 여부
    """
    state = DeployState(base_dir=base_dir, skip_pull=skip_pull)
    executed: List[str] = []
    failed: List[str] = []
    skipped: List[str] = []

    try:
        for name in ALL_STEPS:
            if failed:
                skipped.append(name)
                continue

            logger.info("단계 실행: %s", name)
            try:
                _run_step(name, cfg, state)
            except Exception:  # noqa: BLE001
                failed.append(name)
                logger.exception("단계 실행 실패: %s", name)
                continue
            executed.append(name)

        lines: List[str] = []
        lines.append("# Deploy summary")
        lines.append(f"- compose file: {state.compose_file or '(not written)'}")
        lines.append("")

        for title, items in (
            ("Executed steps", executed),
            ("Skipped steps", skipped),
            ("Failed steps", failed),
        ):
            lines.append(f"## {title}")
            if items:
                for s in items:
                    lines.append(f"- {s}")
            else:
                lines.append("- (none)")
            lines.append("")

        if not failed:
            lines.extend(_final_status(cfg, state, show_api_key))
            lines.append("")
            lines.append("✅ 배포 완료")
        else:
            lines.append(f"❌ 배포 실패: {failed[0]} 단계에서 중단되었습니다.")

        return "\n".join(lines), bool(failed)
    finally:
        state.clear_sensitive()


def plan_all(cfg: DeployConfig) -> str:
    """
    현재 설정과 실행될 단계, 컨테이너에 들어갈 환경변수 키를 요약한다.
    GCP/Docker 호출은 하지 않는다.
    """
    lines: List[str] = []
    lines.append("# Deploy plan")
    lines.append(f"- project: {cfg.gcp_project_id or '(auto: gcloud config / metadata)'}")
    lines.append(f"- secret prefix: {cfg.secret_prefix or '(none)'}")
    lines.append(f"- compose file: {cfg.compose_file}")
    lines.append("")

    lines.append("## Images")
    for image in cfg.images:
        lines.append(f"- {image}")
    lines.append("")

    lines.append("## Config summary")
    lines.append(f"- api_port: {cfg.api_port}")
    lines.append(f"- external_ip: {cfg.external_ip or '(metadata server)'}")
    lines.append(f"- pull_images: {cfg.pull_images}")
    lines.append(f"- prune_volumes: {cfg.prune_volumes}")
    lines.append(f"- up_timeout: {cfg.up_timeout}s")
    lines.append(f"- warmup_seconds: {cfg.warmup_seconds}s")
    lines.append(f"- health_timeout: {cfg.health_timeout}s")
    lines.append("")

    lines.append("## Secrets")
    for spec in gcp_secrets.SECRET_CATALOG:
        kind = "required" if spec.required else "optional"
        lines.append(f"- {gcp_secrets.secret_id(cfg, spec.name)}: {kind}")
    lines.append("")

    lines.append("## Steps")
    for name in ALL_STEPS:
        lines.append(f"- {name}")
    lines.append("")

    groups = environment.build_groups(cfg, gcp_secrets.SecretBundle(), cfg.external_ip or "<VM_IP>")
    total = sum(len(v) for v in groups.values())
    lines.append(f"## Environment ({total} keys)")
    for group, values in groups.items():
        lines.append(f"### {group}")
        for key, value in environment.redact(values).items():
            lines.append(f"- {key}={value}")
    return "\n".join(lines)


def check_all(cfg: DeployConfig, base_dir: str = ".", show_all: bool = False) -> tuple[str, bool]:
    """
    실제 배포 없이 의존성, 프로젝트, secret, 네트워크 상태를 점검한다.

    Returns:
        summary: 사람이 읽기 좋은 텍스트 요약
        has_issues: 배포를 막는 크리티컬 이슈가 있는지 여부
    """
    lines: List[str] = []
    critical: List[str] = []
    warnings: List[str] = []

    lines.append("# Deploy pre-check")
    lines.append("")

    # 1) 의존성
    lines.append("## Dependencies")
    for r in dependencies.check_dependencies():
        if show_all:
            lines.append(f"- {r}")
        if "없음" in r:
            critical.append(r)
    lines.append("")

    # 2) 프로젝트 + Secret Manager
    lines.append("## Secret Manager")
    try:
        project = gcp_secrets.resolve_project_id(cfg)
        if show_all:
            lines.append(f"- Project: {project}")
        for r in gcp_secrets.check_secrets(cfg, project_id=project):
            if show_all:
                lines.append(f"- {r}")
            if "(필수)" in r:
                critical.append(r)
            elif "(선택)" in r:
                warnings.append(r)
    except Exception as e:  # noqa: BLE001
        msg = f"Secrets: 체크 중 예외 발생: {e}"
        if show_all:
            lines.append(f"- {msg}")
        critical.append(msg)
    lines.append("")

    # 3) 외부 IP
    lines.append("## Network")
    try:
        ip = gcp_metadata.get_vm_ip(cfg)
        if show_all:
            lines.append(f"- External IP: {ip}")
    except gcp_metadata.MetadataError as e:
        msg = f"Network: {e}"
        if show_all:
            lines.append(f"- {msg}")
        critical.append(msg)
    lines.append("")

    # 4) compose 파일 (정보성)
    path = compose.compose_path(cfg, base_dir)
    if show_all:
        lines.append("## Compose")
        if os.path.exists(path):
            lines.append(f"- {path}: 존재함 (배포 시 덮어씀)")
        else:
            lines.append(f"- {path}: 없음 (배포 시 생성)")
        lines.append("")

    lines.append("## Summary")
    if critical:
        lines.append("- 상태: 크리티컬 이슈가 있습니다. 배포 전 반드시 해결해야 합니다.")
    elif warnings:
        lines.append("- 상태: 선택 secret 일부가 없거나 확인할 수 없습니다. 없으면 해당 연동은 비활성화됩니다.")
    else:
        lines.append("- 상태: 주요 이슈 없음 (배포 가능 상태로 보입니다)")

    if show_all or critical:
        lines.append("")
        lines.append("### Critical issues")
        if critical:
            for i in critical:
                lines.append(f"- {i}")
        else:
            lines.append("- (none)")

    if show_all or warnings:
        lines.append("")
        lines.append("### Warnings (비활성화될 연동)")
        if warnings:
            for i in warnings:
                lines.append(f"- {i}")
        else:
            lines.append("- (none)")

    if not show_all:
        lines.append("")
        lines.append("자세한 상태를 보려면 `evolution-deploy check -a` 를 실행하세요.")

    return "\n".join(lines), bool(critical)
