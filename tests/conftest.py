"""
pytest 설정:

site-packages 에 다른 버전의 kube_cli 가 설치되어 있어도
테스트는 항상 현재 레포의 소스를 대상으로 하도록 repo root 를 sys.path 최상단에 고정한다.
"""

from __future__ import annotations

import os
import sys

import pytest


def pytest_configure() -> None:
    repo_root = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
    if repo_root not in sys.path:
        sys.path.insert(0, repo_root)


@pytest.fixture
def project_dir(tmp_path):
    """kubecli.yaml + Dockerfile 을 가진 최소 프로젝트"""
    (tmp_path / "kubecli.yaml").write_text(
        "gke:\n"
        "  project: test-project\n"
        "  zone: europe-west1-b\n"
        "  cluster: main-cluster\n"
        "docker:\n"
        "  name: web-app\n"
        "deployment:\n"
        "  name: web-app\n"
        "  namespace: default\n"
        "  container:\n"
        "    name: web\n",
        encoding="utf-8",
    )
    (tmp_path / "Dockerfile").write_text("FROM scratch\n", encoding="utf-8")
    src = tmp_path / "src"
    src.mkdir()
    (src / "main.go").write_text("package main\n", encoding="utf-8")
    return tmp_path
