"""
health
------

컨테이너 기동 후 Evolution API 가 응답하는지 확인한다.
"""

from __future__ import annotations

import time
from typing import Optional

import httpx

from .config import DeployConfig
from .logging_utils import get_logger
from .subprocess_utils import Spinner


logger = get_logger(__name__)


def local_api_url(cfg: DeployConfig) -> str:
    return f"http://localhost:{cfg.api_port}/"


def probe_api(url: str, *, timeout_seconds: float, interval_seconds: float = 2.0,
              client: Optional[httpx.Client] = None) -> bool:
    """
    deadline 까지 url 을 반복 요청한다. 어떤 HTTP 응답이든 받으면 True.
    (인증이 필요한 경로여도 서버가 떠 있다는 것만 확인한다)
    """
    owns_client = client is None
    if client is None:
        client = httpx.Client(timeout=min(interval_seconds * 2, timeout_seconds))

    deadline = time.monotonic() + timeout_seconds
    try:
        while True:
            try:
                response = client.get(url)
                logger.debug("API 응답: %s %s", response.status_code, url)
                return True
            except httpx.TransportError as e:
                logger.debug("API 응답 없음: %s", e)
            if time.monotonic() + interval_seconds >= deadline:
                return False
            time.sleep(interval_seconds)
    finally:
        if owns_client:
            client.close()


def wait_for_api(cfg: DeployConfig, client: Optional[httpx.Client] = None) -> bool:
    """
    WARMUP_SECONDS 만큼 기다린 뒤 API 응답을 확인한다.
    응답이 없어도 예외를 던지지 않고 False 를 돌려준다. (아직 기동 중일 수 있음)
    """
    if cfg.warmup_seconds > 0:
        logger.info("컨테이너가 준비될 때까지 %d초 대기합니다...", cfg.warmup_seconds)
        with Spinner("컨테이너 기동 대기 중"):
            time.sleep(cfg.warmup_seconds)

    url = local_api_url(cfg)
    if probe_api(url, timeout_seconds=cfg.health_timeout, client=client):
        logger.info("✓ API 응답 확인: %s", url)
        return True

    logger.warning("⚠ API 가 아직 응답하지 않을 수 있습니다: %s", url)
    return False
