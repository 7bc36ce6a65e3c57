from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional, List

from dotenv import load_dotenv


ENV_FILES_DEFAULT_ORDER = [".env", ".env.deploy"]


def load_env_files(base_dir: str = ".",
                   files: Optional[List[str]] = None) -> None:
    """
    주어진 디렉토리에서 .env 계열 파일을 순서대로 로드한다.
    후순위 파일이 같은 키를 덮어쓴다.

    여기에는 배포 설정만 둔다. API Key, DB 비밀번호 같은 값은
    항상 Secret Manager 에서 읽는다.
    """
    order = files or ENV_FILES_DEFAULT_ORDER
    for name in order:
        path = os.path.join(base_dir, name)
        if os.path.exists(path):
            load_dotenv(path, override=True)


def _get_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _get_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ValueError(f"{name} 값은 정수여야 합니다: {raw!r}") from e


def _get_str(name: str, default: str) -> str:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip()


@dataclass
class DeployConfig:
    # GCP
    gcp_project_id: Optional[str] = None
    secret_prefix: str = "evolution-"

    # 이미지
    evolution_image: str = "evoapicloud/evolution-api:latest"
    postgres_image: str = "postgres:15"
    redis_image: str = "redis:latest"

    # compose
    compose_file: str = "docker-compose.yaml"
    compose_project_name: Optional[str] = None

    # 서버
    api_port: int = 8080
    external_ip: Optional[str] = None
    language: str = "pt"
    db_locale: str = "pt_BR.UTF-8"

    # 라이프사이클 토글/타임아웃
    pull_images: bool = True
    prune_volumes: bool = False
    up_timeout: int = 300
    pull_timeout: int = 900
    warmup_seconds: int = 15
    health_timeout: int = 30
    metadata_timeout: int = 10
    log_tail: int = 10

    # 선택 연동 기본값 (secret 이 있을 때만 사용됨)
    s3_region: str = "us-east-1"
    s3_bucket_name: str = "evolution-api"
    pusher_cluster: str = "us2"
    proxy_host: str = "proxy.example.com"
    proxy_port: int = 8080
    proxy_protocol: str = "http"

    @property
    def images(self) -> List[str]:
        return [self.evolution_image, self.postgres_image, self.redis_image]

    @classmethod
    def from_env(cls) -> "DeployConfig":
        d = cls()
        cfg = cls(
            gcp_project_id=os.getenv("GCP_PROJECT_ID") or None,
            secret_prefix=os.getenv("SECRET_PREFIX", d.secret_prefix),
            evolution_image=_get_str("EVOLUTION_IMAGE", d.evolution_image),
            postgres_image=_get_str("POSTGRES_IMAGE", d.postgres_image),
            redis_image=_get_str("REDIS_IMAGE", d.redis_image),
            compose_file=_get_str("COMPOSE_FILE", d.compose_file),
            compose_project_name=os.getenv("COMPOSE_PROJECT_NAME") or None,
            api_port=_get_int("API_PORT", d.api_port),
            external_ip=os.getenv("EXTERNAL_IP") or None,
            language=_get_str("EVOLUTION_LANGUAGE", d.language),
            db_locale=_get_str("DB_LOCALE", d.db_locale),
            pull_images=_get_bool("PULL_IMAGES", d.pull_images),
            prune_volumes=_get_bool("PRUNE_VOLUMES", d.prune_volumes),
            up_timeout=_get_int("UP_TIMEOUT", d.up_timeout),
            pull_timeout=_get_int("PULL_TIMEOUT", d.pull_timeout),
            warmup_seconds=_get_int("WARMUP_SECONDS", d.warmup_seconds),
            health_timeout=_get_int("HEALTH_TIMEOUT", d.health_timeout),
            metadata_timeout=_get_int("METADATA_TIMEOUT", d.metadata_timeout),
            log_tail=_get_int("LOG_TAIL", d.log_tail),
            s3_region=_get_str("S3_REGION", d.s3_region),
            s3_bucket_name=_get_str("S3_BUCKET_NAME", d.s3_bucket_name),
            pusher_cluster=_get_str("PUSHER_CLUSTER", d.pusher_cluster),
            proxy_host=_get_str("PROXY_HOST", d.proxy_host),
            proxy_port=_get_int("PROXY_PORT", d.proxy_port),
            proxy_protocol=_get_str("PROXY_PROTOCOL", d.proxy_protocol),
        )

        if not 0 < cfg.api_port < 65536:
            raise ValueError(f"API_PORT 범위가 올바르지 않습니다: {cfg.api_port}")

        for name in ("UP_TIMEOUT", "PULL_TIMEOUT", "HEALTH_TIMEOUT", "METADATA_TIMEOUT"):
            if getattr(cfg, name.lower()) <= 0:
                raise ValueError(f"{name} 는 0 보다 커야 합니다.")

        return cfg
