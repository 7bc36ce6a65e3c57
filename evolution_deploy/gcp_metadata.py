"""
gcp_metadata
------------

GCE 메타데이터 서버에서 VM 외부 IP / 프로젝트 ID 를 조회하는 모듈.
"""

from __future__ import annotations

from typing import Optional

import httpx

from .config import DeployConfig
from .logging_utils import get_logger


logger = get_logger(__name__)


METADATA_BASE_URL = "http://metadata.google.internal/computeMetadata/v1"
EXTERNAL_IP_PATH = "instance/network-interfaces/0/access-configs/0/external-ip"
PROJECT_ID_PATH = "project/project-id"
METADATA_HEADERS = {"Metadata-Flavor": "Google"}


class MetadataError(RuntimeError):
    """메타데이터 서버에 접근할 수 없거나 값이 비어 있음."""


def fetch_metadata(path: str, *, timeout: float = 10.0, client: Optional[httpx.Client] = None) -> str:
    url = f"{METADATA_BASE_URL}/{path}"
    try:
        if client is not None:
            response = client.get(url, headers=METADATA_HEADERS, timeout=timeout)
        else:
            with httpx.Client(timeout=timeout) as c:
                response = c.get(url, headers=METADATA_HEADERS)
        response.raise_for_status()
    except httpx.HTTPError as e:
        raise MetadataError(f"메타데이터 조회 실패 ({path}): {e}") from e

    value = response.text.strip()
    if not value:
        raise MetadataError(f"메타데이터 값이 비어 있습니다: {path}")
    return value


def get_vm_ip(cfg: DeployConfig, client: Optional[httpx.Client] = None) -> str:
    """
    VM 외부 IP 를 돌려준다. EXTERNAL_IP 가 설정되어 있으면 메타데이터를 조회하지 않는다.
    """
    if cfg.external_ip:
        logger.info("✓ 외부 IP (EXTERNAL_IP): %s", cfg.external_ip)
        return cfg.external_ip

    logger.info("VM 외부 IP 를 조회합니다...")
    try:
        ip = fetch_metadata(EXTERNAL_IP_PATH, timeout=cfg.metadata_timeout, client=client)
    except MetadataError as e:
        raise MetadataError(
            f"VM 외부 IP 를 가져올 수 없습니다. GCE VM 이 아니라면 EXTERNAL_IP 를 설정하세요. ({e})"
        ) from e
    logger.info("✓ 외부 IP: %s", ip)
    return ip


def get_project_id(cfg: DeployConfig, client: Optional[httpx.Client] = None) -> str:
    return fetch_metadata(PROJECT_ID_PATH, timeout=cfg.metadata_timeout, client=client)
