"""
compose
-------

docker-compose.yaml 생성 모듈.

파일에는 secret 값이 들어가지 않는다. 모든 환경변수는 ``KEY=${KEY}`` 형태로
참조만 하고, 실제 값은 docker compose 실행 시 프로세스 환경으로 주입한다.
(.env 파일을 만들지 않는다)
"""

from __future__ import annotations

import os
from typing import Any, Dict, Iterable

import yaml

from .config import DeployConfig
from .environment import DB_NAME, DB_USER, catalog_keys
from .logging_utils import get_logger


logger = get_logger(__name__)


API_SERVICE = "evolution_api"
POSTGRES_SERVICE = "postgres"
REDIS_SERVICE = "redis"
NETWORK_NAME = "evolution-net"
CONTAINER_NAMES = [API_SERVICE, POSTGRES_SERVICE, REDIS_SERVICE]

_HEALTH_TIMING = {"interval": "10s", "timeout": "5s", "retries": 5}


def _api_service(cfg: DeployConfig, env_keys: Iterable[str]) -> Dict[str, Any]:
    return {
        "container_name": API_SERVICE,
        "image": cfg.evolution_image,
        "restart": "always",
        "ports": [f"{cfg.api_port}:{cfg.api_port}"],
        "volumes": [
            "evolution_instances:/evolution/instances",
            "evolution_store:/evolution/store",
        ],
        "networks": [NETWORK_NAME],
        "depends_on": {
            POSTGRES_SERVICE: {"condition": "service_healthy"},
            REDIS_SERVICE: {"condition": "service_started"},
        },
        "environment": [f"{key}=${{{key}}}" for key in env_keys],
    }


def _postgres_service(cfg: DeployConfig) -> Dict[str, Any]:
    return {
        "container_name": POSTGRES_SERVICE,
        "image": cfg.postgres_image,
        "restart": "always",
        "ports": ["5432:5432"],
        "environment": {
            "POSTGRES_PASSWORD": "${POSTGRES_PASSWORD}",
            "POSTGRES_USER": DB_USER,
            "POSTGRES_DB": DB_NAME,
            "POSTGRES_INITDB_ARGS": f"--encoding=UTF8 --locale={cfg.db_locale}",
        },
        "volumes": ["postgres_data:/var/lib/postgresql/data"],
        "networks": [NETWORK_NAME],
        "healthcheck": {
            "test": ["CMD-SHELL", f"pg_isready -U {DB_USER} -d {DB_NAME}"],
            **_HEALTH_TIMING,
        },
    }


def _redis_service(cfg: DeployConfig) -> Dict[str, Any]:
    return {
        "container_name": REDIS_SERVICE,
        "image": cfg.redis_image,
        "restart": "always",
        "ports": ["6379:6379"],
        "networks": [NETWORK_NAME],
        "healthcheck": {
            "test": ["CMD", "redis-cli", "ping"],
            **_HEALTH_TIMING,
        },
    }


def build_compose_document(cfg: DeployConfig, env_keys: Iterable[str] | None = None) -> Dict[str, Any]:
    keys = list(env_keys) if env_keys is not None else catalog_keys(cfg)
    return {
        "services": {
            API_SERVICE: _api_service(cfg, keys),
            POSTGRES_SERVICE: _postgres_service(cfg),
            REDIS_SERVICE: _redis_service(cfg),
        },
        "volumes": {
            "postgres_data": {},
            "evolution_instances": {},
            "evolution_store": {},
        },
        "networks": {NETWORK_NAME: {"driver": "bridge"}},
    }


def render_compose(document: Dict[str, Any]) -> str:
    return yaml.safe_dump(
        document,
        default_flow_style=False,
        sort_keys=False,
        allow_unicode=True,
        width=1000000,
    )


def compose_path(cfg: DeployConfig, base_dir: str = ".") -> str:
    if os.path.isabs(cfg.compose_file):
        return cfg.compose_file
    return os.path.join(base_dir, cfg.compose_file)


def write_compose_file(cfg: DeployConfig, base_dir: str = ".", env_keys: Iterable[str] | None = None) -> str:
    """
    docker-compose.yaml 을 생성한다. 기존 파일은 덮어쓴다.
    """
    path = compose_path(cfg, base_dir)
    logger.info("docker-compose 파일을 생성합니다: %s", path)
    text = render_compose(build_compose_document(cfg, env_keys))
    with open(path, "w", encoding="utf-8") as f:
        f.write(text)
    logger.info("✓ %s 생성 완료", os.path.basename(path))
    return path
