import yaml

from evolution_deploy import compose, environment
from evolution_deploy.config import DeployConfig
from evolution_deploy.gcp_secrets import SecretBundle


def test_api_service_references_every_catalog_key() -> None:
    cfg = DeployConfig()
    doc = compose.build_compose_document(cfg)
    api = doc["services"]["evolution_api"]

    expected = [f"{k}=${{{k}}}" for k in environment.catalog_keys(cfg)]
    assert api["environment"] == expected
    assert api["depends_on"]["postgres"] == {"condition": "service_healthy"}
    assert api["depends_on"]["redis"] == {"condition": "service_started"}
    assert api["ports"] == ["8080:8080"]


def test_postgres_and_redis_services() -> None:
    cfg = DeployConfig(postgres_image="postgres:16", db_locale="C.UTF-8")
    doc = compose.build_compose_document(cfg)
    pg = doc["services"]["postgres"]
    redis = doc["services"]["redis"]

    assert pg["image"] == "postgres:16"
    assert pg["environment"]["POSTGRES_PASSWORD"] == "${POSTGRES_PASSWORD}"
    assert pg["environment"]["POSTGRES_INITDB_ARGS"] == "--encoding=UTF8 --locale=C.UTF-8"
    assert pg["healthcheck"]["test"] == ["CMD-SHELL", "pg_isready -U postgres -d evolution_db"]
    assert redis["healthcheck"]["test"] == ["CMD", "redis-cli", "ping"]
    assert doc["networks"] == {"evolution-net": {"driver": "bridge"}}


def test_rendered_file_contains_no_secret_values(tmp_path) -> None:
    cfg = DeployConfig()
    secrets = SecretBundle(values={"api-key": "super-secret-key", "db-password": "hunter2"})
    env = environment.compose_environment(cfg, secrets, "203.0.113.7")
    keys = [k for k in env if k != "POSTGRES_PASSWORD"]

    path = compose.write_compose_file(cfg, str(tmp_path), env_keys=keys)
    text = open(path, encoding="utf-8").read()

    assert "super-secret-key" not in text
    assert "hunter2" not in text
    assert "AUTHENTICATION_API_KEY=${AUTHENTICATION_API_KEY}" in text
    # 파싱 가능한 YAML 이고 서비스 순서가 유지되어야 한다.
    parsed = yaml.safe_load(text)
    assert list(parsed["services"]) == ["evolution_api", "postgres", "redis"]


def test_write_compose_file_overwrites_existing(tmp_path) -> None:
    target = tmp_path / "docker-compose.yaml"
    target.write_text("old: content\n", encoding="utf-8")

    compose.write_compose_file(DeployConfig(), str(tmp_path))

    assert "old: content" not in target.read_text(encoding="utf-8")


def test_compose_path_respects_absolute_path(tmp_path) -> None:
    absolute = str(tmp_path / "custom.yaml")
    cfg = DeployConfig(compose_file=absolute)

    assert compose.compose_path(cfg, "/somewhere/else") == absolute
