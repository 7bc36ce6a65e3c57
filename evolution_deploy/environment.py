"""
environment
-----------

Evolution API 컨테이너에 넘길 환경변수 맵을 조립하는 모듈.

값 자체는 배포 설정 데이터일 뿐이며, 그룹 순서대로 compose 파일에 나열된다.
조건부 그룹(Sentry, S3, ...)은 secret 유무로 켜고 끄지만
키 집합 자체는 항상 동일하게 유지한다.
"""

from __future__ import annotations

from collections import OrderedDict
from typing import Dict, List, Mapping, Tuple
from urllib.parse import quote

from .config import DeployConfig
from .gcp_secrets import DEFAULT_RABBITMQ_URI, SecretBundle
from .logging_utils import get_logger


logger = get_logger(__name__)


DB_USER = "postgres"
DB_NAME = "evolution_db"
DB_SCHEMA = "evolution_api"

SENSITIVE_KEYS = frozenset(
    {
        "AUTHENTICATION_API_KEY",
        "AUTHENTICATION_JWT_SECRET",
        "DATABASE_CONNECTION_URI",
        "SENTRY_DSN",
        "RABBITMQ_URI",
        "S3_ACCESS_KEY",
        "S3_SECRET_KEY",
        "PUSHER_APP_ID",
        "PUSHER_KEY",
        "PUSHER_SECRET",
        "PROXY_USERNAME",
        "PROXY_PASSWORD",
        "CHATWOOT_DB_CONNECTION_URI",
        "AUDIO_CONVERTER_KEY",
        "SSL_PRIVKEY",
        "SSL_FULLCHAIN",
        "POSTGRES_PASSWORD",
    }
)


def _flag(value: bool) -> str:
    return "true" if value else "false"


def server_url(cfg: DeployConfig, vm_ip: str) -> str:
    return f"http://{vm_ip}:{cfg.api_port}"


def _server(cfg: DeployConfig, vm_ip: str) -> Dict[str, str]:
    return {
        "SERVER_TYPE": "http",
        "SERVER_PORT": str(cfg.api_port),
        "SERVER_URL": server_url(cfg, vm_ip),
        "CORS_ORIGIN": "*",
        "CORS_METHODS": "GET,POST,PUT,DELETE",
        "CORS_CREDENTIALS": "true",
    }


LOG_CONFIG = {
    "LOG_LEVEL": "ERROR,WARN,INFO",
    "LOG_COLOR": "false",
    "LOG_BAILEYS": "error",
    "EVENT_EMITTER_MAX_LISTENERS": "50",
}


def _instance(cfg: DeployConfig) -> Dict[str, str]:
    return {
        "DEL_INSTANCE": "false",
        "CONFIG_SESSION_PHONE_CLIENT": "Evolution API",
        "CONFIG_SESSION_PHONE_NAME": "Chrome",
        "QRCODE_LIMIT": "30",
        "QRCODE_COLOR": "#198754",
        "LANGUAGE": cfg.language,
    }


def _auth(secrets: SecretBundle) -> Dict[str, str]:
    return {
        "AUTHENTICATION_API_KEY": secrets.get("api-key"),
        "AUTHENTICATION_EXPOSE_IN_FETCH_INSTANCES": "true",
        "AUTHENTICATION_JWT_SECRET": secrets.get("jwt-secret"),
    }


def database_uri(password: str) -> str:
    # postgres 컨테이너에는 원래 값이, URI 에는 퍼센트 인코딩된 값이 들어간다.
    return f"postgresql://{DB_USER}:{quote(password, safe='')}@postgres:5432/{DB_NAME}?schema={DB_SCHEMA}"


def _database(secrets: SecretBundle) -> Dict[str, str]:
    return {
        "DATABASE_PROVIDER": "postgresql",
        "DATABASE_CONNECTION_URI": database_uri(secrets.get("db-password")),
        "DATABASE_CONNECTION_CLIENT_NAME": "evolution_cloud",
        "DATABASE_SAVE_DATA_INSTANCE": "true",
        "DATABASE_SAVE_DATA_NEW_MESSAGE": "true",
        "DATABASE_SAVE_MESSAGE_UPDATE": "true",
        "DATABASE_SAVE_DATA_CONTACTS": "true",
        "DATABASE_SAVE_DATA_CHATS": "true",
        "DATABASE_SAVE_DATA_LABELS": "true",
        "DATABASE_SAVE_DATA_HISTORIC": "true",
        "DATABASE_SAVE_IS_ON_WHATSAPP": "true",
        "DATABASE_SAVE_IS_ON_WHATSAPP_DAYS": "7",
        "DATABASE_DELETE_MESSAGE": "true",
    }


REDIS_CONFIG = {
    "CACHE_REDIS_ENABLED": "true",
    "CACHE_REDIS_URI": "redis://redis:6379/6",
    "CACHE_REDIS_TTL": "604800",
    "CACHE_REDIS_PREFIX_KEY": "evolution",
    "CACHE_REDIS_SAVE_INSTANCES": "false",
    "CACHE_LOCAL_ENABLED": "false",
}

COMM_CONFIG = {
    "SQS_ENABLED": "false",
    "WEBSOCKET_ENABLED": "false",
    "WEBSOCKET_GLOBAL_EVENTS": "false",
    "WA_BUSINESS_TOKEN_WEBHOOK": "evolution",
    "WA_BUSINESS_URL": "https://graph.facebook.com",
    "WA_BUSINESS_VERSION": "v20.0",
    "WA_BUSINESS_LANGUAGE": "pt_BR",
}

# 이벤트 이름 -> 활성 여부
WEBHOOK_EVENTS: List[Tuple[str, bool]] = [
    ("APPLICATION_STARTUP", False),
    ("QRCODE_UPDATED", True),
    ("MESSAGES_SET", True),
    ("MESSAGES_UPSERT", True),
    ("MESSAGES_EDITED", True),
    ("MESSAGES_UPDATE", True),
    ("MESSAGES_DELETE", True),
    ("SEND_MESSAGE", True),
    ("SEND_MESSAGE_UPDATE", True),
    ("CONTACTS_SET", True),
    ("CONTACTS_UPSERT", True),
    ("CONTACTS_UPDATE", True),
    ("PRESENCE_UPDATE", True),
    ("CHATS_SET", True),
    ("CHATS_UPSERT", True),
    ("CHATS_UPDATE", True),
    ("CHATS_DELETE", True),
    ("GROUPS_UPSERT", True),
    ("GROUPS_UPDATE", True),
    ("GROUP_PARTICIPANTS_UPDATE", True),
    ("CONNECTION_UPDATE", True),
    ("REMOVE_INSTANCE", False),
    ("LOGOUT_INSTANCE", False),
    ("LABELS_EDIT", True),
    ("LABELS_ASSOCIATION", True),
    ("CALL", True),
    ("TYPEBOT_START", False),
    ("TYPEBOT_CHANGE_STATUS", False),
    ("ERRORS", False),
]


def _webhook() -> Dict[str, str]:
    env: Dict[str, str] = {
        "WEBHOOK_GLOBAL_ENABLED": "false",
        "WEBHOOK_GLOBAL_URL": "",
        "WEBHOOK_GLOBAL_WEBHOOK_BY_EVENTS": "false",
    }
    for event, enabled in WEBHOOK_EVENTS:
        env[f"WEBHOOK_EVENTS_{event}"] = _flag(enabled)
    env.update(
        {
            "WEBHOOK_EVENTS_ERRORS_WEBHOOK": "",
            "WEBHOOK_REQUEST_TIMEOUT_MS": "60000",
            "WEBHOOK_RETRY_MAX_ATTEMPTS": "10",
            "WEBHOOK_RETRY_INITIAL_DELAY_SECONDS": "5",
            "WEBHOOK_RETRY_USE_EXPONENTIAL_BACKOFF": "true",
            "WEBHOOK_RETRY_MAX_DELAY_SECONDS": "300",
            "WEBHOOK_RETRY_JITTER_FACTOR": "0.2",
            "WEBHOOK_RETRY_NON_RETRYABLE_STATUS_CODES": "400,401,403,404,422",
        }
    )
    return env


INTEGRATION_CONFIG = {
    "TYPEBOT_ENABLED": "false",
    "TYPEBOT_API_VERSION": "latest",
    "OPENAI_ENABLED": "false",
    "DIFY_ENABLED": "false",
    "N8N_ENABLED": "false",
    "EVOAI_ENABLED": "false",
}


# ---------------------------------------------
# secret 유무로 켜지는 조건부 그룹
# 꺼져 있을 때도 키는 빈 값으로 남긴다.
# ---------------------------------------------

def _sentry(secrets: SecretBundle) -> Dict[str, str]:
    enabled = secrets.has("sentry-dsn")
    return {
        "SENTRY_ENABLED": _flag(enabled),
        "SENTRY_DSN": secrets.get("sentry-dsn") if enabled else "",
    }


def _rabbitmq(secrets: SecretBundle) -> Dict[str, str]:
    uri = secrets.get("rabbitmq-uri")
    enabled = bool(uri) and uri != DEFAULT_RABBITMQ_URI
    return {
        "RABBITMQ_ENABLED": _flag(enabled),
        "RABBITMQ_URI": uri if enabled else "",
        "RABBITMQ_EXCHANGE_NAME": "evolution" if enabled else "",
    }


def _s3(cfg: DeployConfig, secrets: SecretBundle) -> Dict[str, str]:
    enabled = secrets.has("s3-access-key", "s3-secret-key")
    if not enabled:
        return {
            "S3_ENABLED": "false",
            "S3_ACCESS_KEY": "",
            "S3_SECRET_KEY": "",
            "S3_REGION": "",
            "S3_BUCKET_NAME": "",
            "S3_PORT": "",
            "S3_USE_SSL": "",
        }
    return {
        "S3_ENABLED": "true",
        "S3_ACCESS_KEY": secrets.get("s3-access-key"),
        "S3_SECRET_KEY": secrets.get("s3-secret-key"),
        "S3_REGION": cfg.s3_region,
        "S3_BUCKET_NAME": cfg.s3_bucket_name,
        "S3_PORT": "443",
        "S3_USE_SSL": "true",
    }


def _pusher(cfg: DeployConfig, secrets: SecretBundle) -> Dict[str, str]:
    enabled = secrets.has("pusher-app-id", "pusher-key", "pusher-secret")
    if not enabled:
        return {
            "PUSHER_ENABLED": "false",
            "PUSHER_APP_ID": "",
            "PUSHER_KEY": "",
            "PUSHER_SECRET": "",
            "PUSHER_CLUSTER": "",
            "PUSHER_USE_TLS": "",
        }
    return {
        "PUSHER_ENABLED": "true",
        "PUSHER_APP_ID": secrets.get("pusher-app-id"),
        "PUSHER_KEY": secrets.get("pusher-key"),
        "PUSHER_SECRET": secrets.get("pusher-secret"),
        "PUSHER_CLUSTER": cfg.pusher_cluster,
        "PUSHER_USE_TLS": "true",
    }


def _proxy(cfg: DeployConfig, secrets: SecretBundle) -> Dict[str, str]:
    enabled = secrets.has("proxy-username", "proxy-password")
    if not enabled:
        return {
            "PROXY_ENABLED": "false",
            "PROXY_USERNAME": "",
            "PROXY_PASSWORD": "",
            "PROXY_HOST": "",
            "PROXY_PORT": "",
            "PROXY_PROTOCOL": "",
        }
    return {
        "PROXY_ENABLED": "true",
        "PROXY_USERNAME": secrets.get("proxy-username"),
        "PROXY_PASSWORD": secrets.get("proxy-password"),
        "PROXY_HOST": cfg.proxy_host,
        "PROXY_PORT": str(cfg.proxy_port),
        "PROXY_PROTOCOL": cfg.proxy_protocol,
    }


def _chatwoot(secrets: SecretBundle) -> Dict[str, str]:
    enabled = secrets.has("chatwoot-db-uri")
    return {
        "CHATWOOT_ENABLED": _flag(enabled),
        "CHATWOOT_MESSAGE_READ": "true" if enabled else "",
        "CHATWOOT_MESSAGE_DELETE": "true" if enabled else "",
        "CHATWOOT_BOT_CONTACT": "false" if enabled else "",
        "CHATWOOT_DB_CONNECTION_URI": secrets.get("chatwoot-db-uri") if enabled else "",
    }


def _audio_converter(secrets: SecretBundle) -> Dict[str, str]:
    enabled = secrets.has("audio-converter-key")
    return {
        "AUDIO_CONVERTER_ENABLED": _flag(enabled),
        "AUDIO_CONVERTER_KEY": secrets.get("audio-converter-key") if enabled else "",
    }


def _ssl(secrets: SecretBundle) -> Dict[str, str]:
    enabled = secrets.has("ssl-privkey", "ssl-fullchain")
    return {
        "HTTPS_ENABLED": _flag(enabled),
        "SSL_PRIVKEY": secrets.get("ssl-privkey") if enabled else "",
        "SSL_FULLCHAIN": secrets.get("ssl-fullchain") if enabled else "",
    }


def build_groups(cfg: DeployConfig, secrets: SecretBundle, vm_ip: str) -> "OrderedDict[str, Dict[str, str]]":
    """
    그룹 이름 -> 환경변수 dict. compose 파일과 plan 출력이 이 순서를 따른다.
    """
    groups: "OrderedDict[str, Dict[str, str]]" = OrderedDict()
    groups["Server"] = _server(cfg, vm_ip)
    groups["Log"] = dict(LOG_CONFIG)
    groups["Instance"] = _instance(cfg)
    groups["Authentication"] = _auth(secrets)
    groups["Database"] = _database(secrets)
    groups["Sentry"] = _sentry(secrets)
    groups["RabbitMQ"] = _rabbitmq(secrets)
    groups["Communication"] = dict(COMM_CONFIG)
    groups["S3"] = _s3(cfg, secrets)
    groups["Pusher"] = _pusher(cfg, secrets)
    groups["Proxy"] = _proxy(cfg, secrets)
    groups["Webhook"] = _webhook()
    groups["Integrations"] = dict(INTEGRATION_CONFIG)
    groups["Chatwoot"] = _chatwoot(secrets)
    groups["Audio Converter"] = _audio_converter(secrets)
    groups["SSL"] = _ssl(secrets)
    groups["Cache Redis"] = dict(REDIS_CONFIG)
    return groups


def build_environment(cfg: DeployConfig, secrets: SecretBundle, vm_ip: str) -> Dict[str, str]:
    """
    Evolution API 컨테이너 환경변수 전체를 순서가 보존된 dict 로 돌려준다.
    """
    env: Dict[str, str] = {}
    for values in build_groups(cfg, secrets, vm_ip).values():
        for key, value in values.items():
            if key in env:
                raise ValueError(f"환경변수 키가 중복되었습니다: {key}")
            env[key] = value
    logger.debug("환경변수 %d 개 구성됨", len(env))
    return env


def catalog_keys(cfg: DeployConfig) -> List[str]:
    """
    secret 없이도 계산 가능한 환경변수 키 목록. (compose 템플릿 렌더링용)
    """
    return list(build_environment(cfg, SecretBundle(), "0.0.0.0").keys())


def compose_environment(cfg: DeployConfig, secrets: SecretBundle, vm_ip: str) -> Dict[str, str]:
    """
    docker compose 가 보간(${VAR})에 사용할 변수 전체.
    API 컨테이너 환경 + postgres 컨테이너 비밀번호.
    """
    env = build_environment(cfg, secrets, vm_ip)
    env["POSTGRES_PASSWORD"] = secrets.get("db-password")
    return env


def redact(env: Mapping[str, str]) -> Dict[str, str]:
    return {k: ("***" if k in SENSITIVE_KEYS and v else v) for k, v in env.items()}
