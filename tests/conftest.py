"""
pytest 설정:

로컬 작업 환경에 설치된 다른 버전의 evolution_deploy 패키지가 존재할 때,
`pytest` 실행 시 site-packages 쪽이 먼저 import 되어 테스트가 깨질 수 있다.

테스트는 항상 현재 레포의 소스를 대상으로 해야 하므로, repo root 를 sys.path 최상단에 고정한다.
"""

from __future__ import annotations

import os
import sys

import pytest


CONFIG_ENV_VARS = [
    "GCP_PROJECT_ID",
    "SECRET_PREFIX",
    "EVOLUTION_IMAGE",
    "POSTGRES_IMAGE",
    "REDIS_IMAGE",
    "COMPOSE_FILE",
    "COMPOSE_PROJECT_NAME",
    "API_PORT",
    "EXTERNAL_IP",
    "EVOLUTION_LANGUAGE",
    "DB_LOCALE",
    "PULL_IMAGES",
    "PRUNE_VOLUMES",
    "UP_TIMEOUT",
    "PULL_TIMEOUT",
    "WARMUP_SECONDS",
    "HEALTH_TIMEOUT",
    "METADATA_TIMEOUT",
    "LOG_TAIL",
    "S3_REGION",
    "S3_BUCKET_NAME",
    "PUSHER_CLUSTER",
    "PROXY_HOST",
    "PROXY_PORT",
    "PROXY_PROTOCOL",
]


def pytest_configure() -> None:
    repo_root = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
    if repo_root not in sys.path:
        sys.path.insert(0, repo_root)


@pytest.fixture(autouse=True)
def clean_config_env(monkeypatch: pytest.MonkeyPatch) -> None:
    # setenv 를 먼저 해야 load_dotenv 가 직접 넣은 값도 테스트 종료 시 원래 상태로 되돌아간다.
    for name in CONFIG_ENV_VARS:
        monkeypatch.setenv(name, "")
        monkeypatch.delenv(name)
