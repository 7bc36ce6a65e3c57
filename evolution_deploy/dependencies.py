"""
dependencies
------------

배포 전에 필요한 CLI(gcloud, docker, docker compose)와
Docker 권한, gcloud 인증 상태를 확인하는 모듈.
"""

from __future__ import annotations

import shutil
from dataclasses import dataclass
from typing import Callable, List

from .logging_utils import get_logger
from .subprocess_utils import CommandError, run_command


logger = get_logger(__name__)


class DependencyError(RuntimeError):
    """필수 도구가 없거나 사용할 수 없는 상태."""


@dataclass(frozen=True)
class _Check:
    description: str
    hint: str
    probe: Callable[[], bool]


def _on_path(name: str) -> Callable[[], bool]:
    return lambda: shutil.which(name) is not None


def _succeeds(cmd: List[str], *, require_output: bool = False) -> Callable[[], bool]:
    def _probe() -> bool:
        try:
            result = run_command(cmd, timeout=30, check=False)
        except CommandError:
            return False
        if not result.ok:
            return False
        if require_output:
            return bool(result.stdout.strip())
        return True

    return _probe


CHECKS: List[_Check] = [
    _Check(
        "gcloud CLI",
        "설치: https://cloud.google.com/sdk/docs/install",
        _on_path("gcloud"),
    ),
    _Check(
        "Docker",
        "설치: sudo apt update && sudo apt install -y docker.io",
        _on_path("docker"),
    ),
    _Check(
        "Docker Compose",
        "Docker 에 포함된 compose 플러그인이 필요합니다 (docker compose version)",
        _succeeds(["docker", "compose", "version"]),
    ),
    _Check(
        "Docker 권한",
        "실행: sudo usermod -aG docker $USER && newgrp docker",
        _succeeds(["docker", "ps"]),
    ),
    _Check(
        "Google Cloud 인증",
        "실행: gcloud auth login",
        _succeeds(
            ["gcloud", "auth", "list", "--filter=status:ACTIVE", "--format=value(account)"],
            require_output=True,
        ),
    ),
]


def ensure_dependencies() -> None:
    """
    필수 의존성을 순서대로 확인하고, 처음 실패한 항목에서 DependencyError 를 던진다.
    """
    logger.info("의존성을 확인합니다...")
    for check in CHECKS:
        if not check.probe():
            raise DependencyError(f"{check.description} 을(를) 사용할 수 없습니다. {check.hint}")
        logger.info("✓ %s 확인", check.description)


def check_dependencies() -> List[str]:
    """
    모든 의존성 상태를 확인만 하고 결과 문자열 목록을 돌려준다. (예외 없음)
    """
    results: List[str] = []
    for check in CHECKS:
        if check.probe():
            results.append(f"Dependencies: 사용 가능 ({check.description})")
        else:
            results.append(f"Dependencies: 없음 ({check.description}) - {check.hint}")
    return results
