"""
docker_ops
----------

docker / docker compose 명령 래퍼.
"""

from __future__ import annotations

import os
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Dict, List, Mapping, Optional

from .compose import CONTAINER_NAMES, compose_path
from .config import DeployConfig
from .logging_utils import get_logger
from .subprocess_utils import CommandError, RunResult, run_command


logger = get_logger(__name__)


def compose_base(cfg: DeployConfig, base_dir: str = ".") -> List[str]:
    cmd = ["docker", "compose", "-f", compose_path(cfg, base_dir)]
    if cfg.compose_project_name:
        cmd += ["-p", cfg.compose_project_name]
    return cmd


def _child_env(env: Optional[Mapping[str, str]]) -> Optional[Dict[str, str]]:
    if env is None:
        return None
    merged = dict(os.environ)
    merged.update(env)
    return merged


def compose_down(cfg: DeployConfig, base_dir: str = ".") -> None:
    """
    기존 컨테이너를 정리한다. 첫 배포라 compose 프로젝트가 없을 수 있으므로 실패해도 계속한다.
    """
    try:
        run_command(compose_base(cfg, base_dir) + ["down", "--remove-orphans"], timeout=cfg.up_timeout)
    except CommandError as e:
        logger.warning("기존 컨테이너 정리 실패 (계속 진행): %s", e)


def prune_volumes() -> None:
    try:
        run_command(["docker", "volume", "prune", "-f"], timeout=120)
    except CommandError as e:
        logger.warning("docker volume prune 실패 (계속 진행): %s", e)


def pull_images(cfg: DeployConfig) -> List[str]:
    """
    이미지들을 병렬로 pull 하고 모두 끝날 때까지 기다린다.
    하나라도 실패하면 실패한 이미지 목록과 함께 CommandError 를 던진다.
    """
    images = cfg.images
    logger.info("Docker 이미지를 내려받습니다: %s", images)

    failures: Dict[str, str] = {}
    with ThreadPoolExecutor(max_workers=len(images)) as pool:
        futures = {
            pool.submit(run_command, ["docker", "pull", image], timeout=cfg.pull_timeout): image
            for image in images
        }
        for fut in as_completed(futures):
            image = futures[fut]
            try:
                fut.result()
                logger.info("✓ %s", image)
            except CommandError as e:
                failures[image] = str(e)
                logger.error("이미지 pull 실패: %s", image)

    if failures:
        detail = "\n".join(f"- {img}: {msg}" for img, msg in sorted(failures.items()))
        raise CommandError(
            f"이미지 다운로드 실패 ({len(failures)}/{len(images)}):\n{detail}",
            cmd=["docker", "pull"],
        )
    return images


def compose_up(cfg: DeployConfig, env: Mapping[str, str], base_dir: str = ".") -> RunResult:
    """
    docker compose up -d. env 는 compose 파일의 ${VAR} 보간에 사용된다.
    """
    logger.info("컨테이너를 시작합니다...")
    result = run_command(
        compose_base(cfg, base_dir) + ["up", "-d"],
        env=_child_env(env),
        timeout=cfg.up_timeout,
        stream_output=True,
    )
    logger.info("✓ 컨테이너 시작됨")
    return result


def container_logs(name: str, tail: int = 10) -> str:
    result = run_command(["docker", "logs", name, "--tail", str(tail)], timeout=30, check=False)
    # docker logs 는 컨테이너의 stderr 를 그대로 stderr 로 내보낸다.
    return (result.stdout + result.stderr).strip()


def container_status() -> str:
    cmd = ["docker", "ps", "--format", "table {{.Names}}\t{{.Status}}\t{{.Ports}}"]
    for name in CONTAINER_NAMES:
        cmd += ["--filter", f"name={name}"]
    result = run_command(cmd, timeout=30, check=False)
    if not result.ok:
        return f"(docker ps 실패: exit={result.returncode})"
    return result.stdout.rstrip()
