"""
kube_cli
--------

GKE 배포용 CLI 패키지.
프로젝트를 tar.gz 로 묶어 GCS 에 올리고, Cloud Build 로 도커 이미지를 만든 뒤
GKE Deployment 의 컨테이너 이미지를 교체한다. 롤백과 자체 업데이트도 지원한다.
"""

__version__ = "0.4.0"

__all__ = [
    "config",
    "orchestrator",
    "updater",
]
