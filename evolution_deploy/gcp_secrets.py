"""
gcp_secrets
-----------

Secret Manager 에서 Evolution API 배포에 필요한 secret 들을 읽어오는 모듈.

필수 secret 이 없으면 배포를 중단하고, 선택 secret 은 빈 값으로 둔다.
"""

from __future__ import annotations

import base64
import os
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from google.api_core.exceptions import GoogleAPICallError, NotFound
from google.auth.exceptions import DefaultCredentialsError
from google.cloud import secretmanager

from .config import DeployConfig
from .gcp_metadata import MetadataError, get_project_id
from .logging_utils import get_logger
from .subprocess_utils import CommandError, run_command


logger = get_logger(__name__)


DEFAULT_RABBITMQ_URI = "amqp://localhost"


class SecretLoadError(RuntimeError):
    """필수 secret 을 읽지 못함."""


@dataclass(frozen=True)
class SecretSpec:
    name: str
    required: bool
    description: str


SECRET_CATALOG: List[SecretSpec] = [
    SecretSpec("api-key", True, "Evolution API Key"),
    SecretSpec("db-password", True, "데이터베이스 비밀번호"),
    SecretSpec("jwt-secret", False, "JWT Secret"),
    SecretSpec("sentry-dsn", False, "Sentry DSN"),
    SecretSpec("s3-access-key", False, "S3 Access Key"),
    SecretSpec("s3-secret-key", False, "S3 Secret Key"),
    SecretSpec("rabbitmq-uri", False, "RabbitMQ URI"),
    SecretSpec("pusher-app-id", False, "Pusher App ID"),
    SecretSpec("pusher-key", False, "Pusher Key"),
    SecretSpec("pusher-secret", False, "Pusher Secret"),
    SecretSpec("proxy-username", False, "Proxy Username"),
    SecretSpec("proxy-password", False, "Proxy Password"),
    SecretSpec("audio-converter-key", False, "Audio Converter Key"),
    SecretSpec("chatwoot-db-uri", False, "Chatwoot Database URI"),
    SecretSpec("ssl-privkey", False, "SSL Private Key"),
    SecretSpec("ssl-fullchain", False, "SSL Full Chain"),
]


@dataclass
class SecretBundle:
    """secret 이름(prefix 제외) -> 값. 없는 선택 secret 은 빈 문자열."""

    values: Dict[str, str] = field(default_factory=dict)

    def get(self, name: str) -> str:
        return self.values.get(name, "")

    def has(self, *names: str) -> bool:
        return all(self.get(n) for n in names)

    def redacted(self) -> Dict[str, str]:
        return {k: ("***" if v else "") for k, v in self.values.items()}

    def clear(self) -> None:
        self.values.clear()


def secret_id(cfg: DeployConfig, name: str) -> str:
    return f"{cfg.secret_prefix}{name}"


def resolve_project_id(cfg: DeployConfig) -> str:
    """
    GCP_PROJECT_ID > gcloud 기본 프로젝트 > 메타데이터 서버 순서로 프로젝트 ID 를 결정한다.
    """
    if cfg.gcp_project_id:
        return cfg.gcp_project_id

    try:
        result = run_command(["gcloud", "config", "get-value", "project"], timeout=30, check=False)
        project = result.stdout.strip()
        if result.ok and project and project != "(unset)":
            logger.info("gcloud 기본 프로젝트를 사용합니다: %s", project)
            return project
    except CommandError as e:
        logger.debug("gcloud 기본 프로젝트 조회 실패: %s", e)

    try:
        project = get_project_id(cfg)
    except MetadataError as e:
        raise SecretLoadError(
            "GCP 프로젝트를 결정할 수 없습니다. GCP_PROJECT_ID 를 설정하세요."
        ) from e
    logger.info("메타데이터 서버의 프로젝트를 사용합니다: %s", project)
    return project


def _make_client() -> secretmanager.SecretManagerServiceClient:
    try:
        return secretmanager.SecretManagerServiceClient()
    except DefaultCredentialsError as e:
        raise SecretLoadError(
            "Secret Manager 인증 정보를 찾을 수 없습니다. "
            "gcloud auth application-default login 또는 VM 서비스 계정을 확인하세요."
        ) from e


def _access_latest(client, name: str) -> Optional[str]:  # noqa: ANN001
    try:
        response = client.access_secret_version(name=f"{name}/versions/latest")
    except GoogleAPICallError as e:
        logger.debug("secret 접근 실패 %s: %s", name, e)
        return None
    try:
        value = response.payload.data.decode("utf-8").rstrip("\n")
    except UnicodeDecodeError as e:
        raise SecretLoadError(f"secret '{name}' 의 값이 UTF-8 텍스트가 아닙니다.") from e
    return value or None


def generate_jwt_secret() -> str:
    return base64.b64encode(os.urandom(64)).decode("ascii")


def load_secrets(cfg: DeployConfig, client=None, project_id: Optional[str] = None) -> SecretBundle:  # noqa: ANN001
    """
    SECRET_CATALOG 의 모든 secret 최신 버전을 읽어 SecretBundle 로 돌려준다.
    """
    logger.info("Secret Manager 에서 secret 을 불러옵니다...")
    project = project_id or resolve_project_id(cfg)
    if client is None:
        client = _make_client()

    bundle = SecretBundle()
    for spec in SECRET_CATALOG:
        sid = secret_id(cfg, spec.name)
        value = _access_latest(client, f"projects/{project}/secrets/{sid}")

        if value is None:
            if spec.required:
                raise SecretLoadError(
                    f"필수 secret '{sid}' 을(를) 찾을 수 없습니다. "
                    f"생성: gcloud secrets create {sid} --data-file=-"
                )
            logger.warning("⚠ 선택 secret '%s' 없음 (계속 진행)", sid)
            bundle.values[spec.name] = ""
            continue

        logger.info("✓ %s 로드됨", spec.description)
        bundle.values[spec.name] = value

    if not bundle.get("jwt-secret"):
        bundle.values["jwt-secret"] = generate_jwt_secret()
        logger.info("✓ JWT Secret 자동 생성")

    if not bundle.get("rabbitmq-uri"):
        bundle.values["rabbitmq-uri"] = DEFAULT_RABBITMQ_URI

    return bundle


def check_secrets(cfg: DeployConfig, client=None, project_id: Optional[str] = None) -> List[str]:  # noqa: ANN001
    """
    SECRET_CATALOG 의 secret 들이 Secret Manager 에 존재하는지 확인한다.
    (값은 읽지 않고, 없어도 생성하지 않는다)
    """
    project = project_id or resolve_project_id(cfg)
    if client is None:
        client = _make_client()

    results: List[str] = []
    for spec in SECRET_CATALOG:
        name = f"projects/{project}/secrets/{secret_id(cfg, spec.name)}"
        kind = "필수" if spec.required else "선택"
        try:
            client.get_secret(name=name)
            results.append(f"Secrets: 존재함 ({name})")
        except NotFound:
            results.append(f"Secrets: 없음 ({kind}) ({name})")
        except GoogleAPICallError as e:
            # secretAccessor 역할만 있으면 값은 읽을 수 있어도 secrets.get 은 거부된다.
            logger.debug("secret 메타데이터 조회 실패 %s: %s", name, e)
            results.append(f"Secrets: 확인 불가 (권한) ({kind}) ({name})")
    return results
