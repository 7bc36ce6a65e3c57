from __future__ import annotations

import os
from typing import Dict, List

import pytest

from evolution_deploy import orchestrator
from evolution_deploy.config import DeployConfig
from evolution_deploy.gcp_secrets import SecretBundle, SecretLoadError


def _bundle() -> SecretBundle:
    return SecretBundle(
        values={
            "api-key": "abcd1234efgh",
            "db-password": "pw",
            "jwt-secret": "jwt",
            "rabbitmq-uri": "amqp://localhost",
        }
    )


@pytest.fixture
def calls(monkeypatch: pytest.MonkeyPatch) -> List[str]:
    """모든 외부 호출을 가짜로 바꾸고 호출 순서를 기록한다."""
    seen: List[str] = []

    def record(name: str, result=None):  # noqa: ANN001, ANN202
        def _fake(*args, **kwargs):  # noqa: ANN002, ANN003, ANN202
            seen.append(name)
            return result

        return _fake

    def fake_load(cfg):  # noqa: ANN001, ANN202
        seen.append("secrets")
        return _bundle()

    monkeypatch.setattr(orchestrator.dependencies, "ensure_dependencies", record("dependencies"))
    monkeypatch.setattr(orchestrator.gcp_secrets, "load_secrets", fake_load)
    monkeypatch.setattr(orchestrator.gcp_metadata, "get_vm_ip", record("ip", "203.0.113.7"))
    monkeypatch.setattr(orchestrator.docker_ops, "compose_down", record("down"))
    monkeypatch.setattr(orchestrator.docker_ops, "prune_volumes", record("prune"))
    monkeypatch.setattr(orchestrator.docker_ops, "pull_images", record("pull"))
    monkeypatch.setattr(orchestrator.docker_ops, "compose_up", record("up"))
    monkeypatch.setattr(orchestrator.docker_ops, "container_status", record("status", "evolution_api Up"))
    monkeypatch.setattr(orchestrator.docker_ops, "container_logs", record("logs", "log line"))
    monkeypatch.setattr(orchestrator.health, "wait_for_api", record("health", True))
    return seen


def test_deploy_all_success(calls: List[str], tmp_path) -> None:
    summary, has_failures = orchestrator.deploy_all(DeployConfig(), base_dir=str(tmp_path))

    assert not has_failures
    assert calls[:7] == ["dependencies", "secrets", "ip", "down", "pull", "up", "health"]
    assert "prune" not in calls
    assert os.path.exists(tmp_path / "docker-compose.yaml")
    assert "- URL: http://203.0.113.7:8080" in summary
    assert "- Swagger: http://203.0.113.7:8080/swagger" in summary
    assert "✅ 배포 완료" in summary


def test_api_key_masked_unless_requested(calls: List[str], tmp_path) -> None:
    summary, _ = orchestrator.deploy_all(DeployConfig(), base_dir=str(tmp_path))
    assert "abcd1234efgh" not in summary
    assert "- API Key: abcd********" in summary

    summary, _ = orchestrator.deploy_all(DeployConfig(), base_dir=str(tmp_path), show_api_key=True)
    assert "- API Key: abcd1234efgh" in summary


def test_compose_file_has_no_secret_values(calls: List[str], tmp_path) -> None:
    orchestrator.deploy_all(DeployConfig(), base_dir=str(tmp_path))

    text = (tmp_path / "docker-compose.yaml").read_text(encoding="utf-8")
    assert "abcd1234efgh" not in text
    assert "POSTGRES_PASSWORD: ${POSTGRES_PASSWORD}" in text


def test_secret_env_is_cleared_after_deploy(monkeypatch: pytest.MonkeyPatch, calls: List[str], tmp_path) -> None:
    captured: Dict[str, Dict[str, str]] = {}

    def fake_up(cfg, env, base_dir):  # noqa: ANN001, ANN202
        captured["env"] = env
        assert env["POSTGRES_PASSWORD"] == "pw"
        assert env["AUTHENTICATION_API_KEY"] == "abcd1234efgh"

    monkeypatch.setattr(orchestrator.docker_ops, "compose_up", fake_up)

    orchestrator.deploy_all(DeployConfig(), base_dir=str(tmp_path))

    assert captured["env"] == {}


def test_missing_secret_stops_deploy(monkeypatch: pytest.MonkeyPatch, calls: List[str], tmp_path) -> None:
    def failing_load(cfg):  # noqa: ANN001, ANN202
        raise SecretLoadError("필수 secret 'evolution-api-key' 없음")

    monkeypatch.setattr(orchestrator.gcp_secrets, "load_secrets", failing_load)

    summary, has_failures = orchestrator.deploy_all(DeployConfig(), base_dir=str(tmp_path))

    assert has_failures
    assert calls == ["dependencies"]
    assert "## Failed steps\n- secrets" in summary
    assert "- containers" in summary
    assert not os.path.exists(tmp_path / "docker-compose.yaml")
    assert "❌ 배포 실패: secrets" in summary


def test_skip_pull_and_prune(calls: List[str], tmp_path) -> None:
    cfg = DeployConfig(prune_volumes=True)

    _, has_failures = orchestrator.deploy_all(cfg, base_dir=str(tmp_path), skip_pull=True)

    assert not has_failures
    assert "pull" not in calls
    assert calls.index("down") < calls.index("prune") < calls.index("up")


def test_unresponsive_api_is_a_warning(monkeypatch: pytest.MonkeyPatch, calls: List[str], tmp_path) -> None:
    monkeypatch.setattr(orchestrator.health, "wait_for_api", lambda cfg: False)

    summary, has_failures = orchestrator.deploy_all(DeployConfig(), base_dir=str(tmp_path))

    assert not has_failures
    assert "logs" in calls
    assert "API 가 아직 응답하지 않습니다" in summary


def test_mask() -> None:
    assert orchestrator.mask("") == "(empty)"
    assert orchestrator.mask("abc") == "***"
    assert orchestrator.mask("abcdefgh") == "abcd********"


def test_plan_all_lists_everything_without_values() -> None:
    cfg = DeployConfig(gcp_project_id="proj-1")

    text = orchestrator.plan_all(cfg)

    assert "- evolution-api-key: required" in text
    assert "- evolution-sentry-dsn: optional" in text
    assert "### Database" in text
    assert "- SERVER_URL=http://<VM_IP>:8080" in text
    for step in orchestrator.ALL_STEPS:
        assert f"- {step}" in text


def test_check_all_reports_critical(monkeypatch: pytest.MonkeyPatch, tmp_path) -> None:
    monkeypatch.setattr(
        orchestrator.dependencies,
        "check_dependencies",
        lambda: ["Dependencies: 사용 가능 (gcloud CLI)", "Dependencies: 없음 (Docker) - 설치"],
    )
    monkeypatch.setattr(orchestrator.gcp_secrets, "resolve_project_id", lambda cfg: "proj-1")
    monkeypatch.setattr(
        orchestrator.gcp_secrets,
        "check_secrets",
        lambda cfg, project_id=None: ["Secrets: 없음 (선택) (projects/proj-1/secrets/evolution-sentry-dsn)"],
    )
    monkeypatch.setattr(orchestrator.gcp_metadata, "get_vm_ip", lambda cfg: "1.2.3.4")

    report, has_issues = orchestrator.check_all(DeployConfig(), base_dir=str(tmp_path))

    assert has_issues
    assert "Dependencies: 없음 (Docker)" in report
    assert "evolution-sentry-dsn" in report


def test_check_all_optional_only_is_not_critical(monkeypatch: pytest.MonkeyPatch, tmp_path) -> None:
    monkeypatch.setattr(orchestrator.dependencies, "check_dependencies", lambda: [])
    monkeypatch.setattr(orchestrator.gcp_secrets, "resolve_project_id", lambda cfg: "proj-1")
    monkeypatch.setattr(
        orchestrator.gcp_secrets,
        "check_secrets",
        lambda cfg, project_id=None: ["Secrets: 없음 (선택) (projects/proj-1/secrets/evolution-sentry-dsn)"],
    )
    monkeypatch.setattr(orchestrator.gcp_metadata, "get_vm_ip", lambda cfg: "1.2.3.4")

    report, has_issues = orchestrator.check_all(DeployConfig(), base_dir=str(tmp_path), show_all=True)

    assert not has_issues
    assert "- External IP: 1.2.3.4" in report
    assert "없음 (배포 시 생성)" in report


def test_check_all_with_accessor_only_role(monkeypatch: pytest.MonkeyPatch, tmp_path) -> None:
    from google.api_core.exceptions import PermissionDenied

    class AccessorOnlyClient:
        def get_secret(self, name: str):  # noqa: ANN201
            raise PermissionDenied("secretmanager.secrets.get denied")

    monkeypatch.setattr(orchestrator.dependencies, "check_dependencies", lambda: [])
    monkeypatch.setattr(orchestrator.gcp_secrets, "resolve_project_id", lambda cfg: "proj-1")
    monkeypatch.setattr(orchestrator.gcp_secrets, "_make_client", lambda: AccessorOnlyClient())
    monkeypatch.setattr(orchestrator.gcp_metadata, "get_vm_ip", lambda cfg: "1.2.3.4")

    report, has_issues = orchestrator.check_all(DeployConfig(), base_dir=str(tmp_path))

    # 필수 secret 두 개만 크리티컬, 선택 secret 은 경고로 분류된다.
    assert has_issues
    assert "체크 중 예외 발생" not in report
    assert "Secrets: 확인 불가 (권한) (필수) (projects/proj-1/secrets/evolution-api-key)" in report
    assert "Secrets: 확인 불가 (권한) (필수) (projects/proj-1/secrets/evolution-db-password)" in report
    assert "Secrets: 확인 불가 (권한) (선택) (projects/proj-1/secrets/evolution-sentry-dsn)" in report


def test_check_all_optional_permission_gap_is_a_warning(monkeypatch: pytest.MonkeyPatch, tmp_path) -> None:
    monkeypatch.setattr(orchestrator.dependencies, "check_dependencies", lambda: [])
    monkeypatch.setattr(orchestrator.gcp_secrets, "resolve_project_id", lambda cfg: "proj-1")
    monkeypatch.setattr(
        orchestrator.gcp_secrets,
        "check_secrets",
        lambda cfg, project_id=None: [
            "Secrets: 존재함 (projects/proj-1/secrets/evolution-api-key)",
            "Secrets: 확인 불가 (권한) (선택) (projects/proj-1/secrets/evolution-sentry-dsn)",
        ],
    )
    monkeypatch.setattr(orchestrator.gcp_metadata, "get_vm_ip", lambda cfg: "1.2.3.4")

    report, has_issues = orchestrator.check_all(DeployConfig(), base_dir=str(tmp_path))

    assert not has_issues
    assert "### Warnings" in report
