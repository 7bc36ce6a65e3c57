"""
evolution_deploy
----------------

GCP VM 용 Evolution API 배포 CLI 패키지.
Secret Manager 에서 secret 을 읽어 환경변수를 구성하고, docker-compose.yaml 을 생성한 뒤
Evolution API + PostgreSQL + Redis 컨테이너를 기동/점검하는 것을 목표로 한다.
"""

__all__ = [
    "config",
    "orchestrator",
]
