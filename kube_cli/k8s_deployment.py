"""
k8s_deployment
--------------

GKE 클러스터의 Deployment 이미지 교체 / 롤백 / 상태 조회를 담당하는 모듈.

이미지 교체와 롤백은 낙관적 동시성(resourceVersion) 기반이라,
409 Conflict 가 나면 최신 객체를 다시 읽어서 전체 사이클을 재시도한다.
"""

from __future__ import annotations

import contextlib
import copy
import os
import tempfile
import time
from typing import Any, Callable, Iterator, List, Optional

from kubernetes import client as k8s
from kubernetes.client.rest import ApiException
from urllib3.exceptions import HTTPError as Urllib3HTTPError

from .errors import ConflictError, NetworkError, NotFoundError
from .gcp_gke import ClusterCredential
from .logging_utils import get_logger
from .retry import DEFAULT_CONFLICT_BUDGET, LinearBackoff, retry_on_conflict


logger = get_logger(__name__)

REVISION_ANNOTATION = "deployment.kubernetes.io/revision"
POD_TEMPLATE_HASH_LABEL = "pod-template-hash"


def _write_secret(directory: str, name: str, data: bytes) -> str:
    path = os.path.join(directory, name)
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
    with os.fdopen(fd, "wb") as f:
        f.write(data)
    return path


@contextlib.contextmanager
def apps_api(cred: ClusterCredential) -> Iterator[k8s.AppsV1Api]:
    """
    ClusterCredential 로 AppsV1Api 를 만든다.

    kubernetes 클라이언트는 인증서를 파일 경로로만 받으므로,
    블록이 끝나면 지워지는 전용 임시 디렉토리에 0600 으로 기록한다.
    """
    with tempfile.TemporaryDirectory(prefix="kube-cli-") as tmp:
        configuration = k8s.Configuration()
        configuration.host = cred.host
        configuration.verify_ssl = True
        if cred.ca_cert:
            configuration.ssl_ca_cert = _write_secret(tmp, "ca.crt", cred.ca_cert)
        if cred.client_cert and cred.client_key:
            configuration.cert_file = _write_secret(tmp, "client.crt", cred.client_cert)
            configuration.key_file = _write_secret(tmp, "client.key", cred.client_key)
        if cred.token:
            configuration.api_key = {"authorization": cred.token}
            configuration.api_key_prefix = {"authorization": "Bearer"}
        elif cred.username:
            configuration.username = cred.username
            configuration.password = cred.password

        with k8s.ApiClient(configuration) as api_client:
            yield k8s.AppsV1Api(api_client)


@contextlib.contextmanager
def kube_api_errors(action: str) -> Iterator[None]:
    """ApiException 을 상태코드별 kube-cli 예외로 바꾼다. (409 -> ConflictError)"""
    try:
        yield
    except ApiException as e:
        if e.status == 409:
            raise ConflictError(f"{action}: 리소스가 동시에 수정되었습니다.") from e
        if e.status == 404:
            raise NotFoundError(f"{action}: 리소스를 찾을 수 없습니다.") from e
        raise NetworkError(f"{action} 실패 (status={e.status}): {e.reason}") from e
    except Urllib3HTTPError as e:
        raise NetworkError(f"{action} 실패: 클러스터에 연결할 수 없습니다: {e}") from e


def set_container_image(deployment: Any, container: str, image: str) -> bool:
    """
    Deployment 객체에서 이름이 container 인 컨테이너의 image 만 바꾼다.
    해당 컨테이너가 있으면 True.
    """
    found = False
    for c in deployment.spec.template.spec.containers or []:
        if c.name == container:
            c.image = image
            found = True
    return found


def update_image(
    apps: Any,
    namespace: str,
    name: str,
    container: str,
    image: str,
    *,
    budget: int = DEFAULT_CONFLICT_BUDGET,
    backoff: Callable[[int], float] = LinearBackoff(),
    sleep: Callable[[float], Any] = time.sleep,
) -> int:
    """
    Deployment 의 컨테이너 이미지를 교체하여 롤링 업데이트를 트리거한다.
    실행한 fetch-mutate-submit 사이클 수를 반환한다.
    """
    cycles = 0

    def _cycle() -> None:
        nonlocal cycles
        cycles += 1
        with kube_api_errors(f"Deployment 조회 ({namespace}/{name})"):
            deployment = apps.read_namespaced_deployment(name, namespace)
        if not set_container_image(deployment, container, image):
            raise NotFoundError(f"Deployment {name} 에 컨테이너 {container} 가 없습니다.")
        with kube_api_errors(f"Deployment 업데이트 ({namespace}/{name})"):
            apps.replace_namespaced_deployment(name, namespace, deployment)

    logger.info("Deployment 이미지 교체: %s/%s container=%s image=%s", namespace, name, container, image)
    retry_on_conflict(_cycle, budget=budget, backoff=backoff, sleep=sleep)
    return cycles


def _revision(obj: Any) -> int:
    annotations = obj.metadata.annotations or {}
    try:
        return int(annotations.get(REVISION_ANNOTATION, "0"))
    except ValueError:
        return 0


def _owned_replica_sets(apps: Any, namespace: str, deployment: Any) -> List[Any]:
    labels = deployment.spec.selector.match_labels or {}
    selector = ",".join(f"{k}={v}" for k, v in sorted(labels.items()))
    with kube_api_errors(f"ReplicaSet 목록 조회 ({namespace})"):
        result = apps.list_namespaced_replica_set(namespace, label_selector=selector)
    uid = deployment.metadata.uid
    return [
        rs for rs in result.items
        if any(ref.uid == uid for ref in (rs.metadata.owner_references or []))
    ]


def previous_revision(replica_sets: List[Any], current: int) -> Optional[Any]:
    """current 보다 낮은 revision 중 가장 최근 ReplicaSet"""
    candidates = [rs for rs in replica_sets if 0 < _revision(rs) < current]
    if not candidates:
        return None
    return max(candidates, key=_revision)


def rollback(
    apps: Any,
    namespace: str,
    name: str,
    *,
    budget: int = DEFAULT_CONFLICT_BUDGET,
    backoff: Callable[[int], float] = LinearBackoff(),
    sleep: Callable[[float], Any] = time.sleep,
) -> int:
    """
    Deployment 를 직전 revision 의 pod template 으로 되돌린다.
    되돌린 대상 revision 번호를 반환한다.
    """
    target_revision = 0

    def _cycle() -> None:
        nonlocal target_revision
        with kube_api_errors(f"Deployment 조회 ({namespace}/{name})"):
            deployment = apps.read_namespaced_deployment(name, namespace)
        current = _revision(deployment)
        previous = previous_revision(_owned_replica_sets(apps, namespace, deployment), current)
        if previous is None:
            raise NotFoundError(f"Deployment {name} 에 되돌릴 이전 revision 이 없습니다.")

        template = copy.deepcopy(previous.spec.template)
        if template.metadata is not None and template.metadata.labels:
            template.metadata.labels.pop(POD_TEMPLATE_HASH_LABEL, None)
        deployment.spec.template = template

        with kube_api_errors(f"Deployment 롤백 ({namespace}/{name})"):
            apps.replace_namespaced_deployment(name, namespace, deployment)
        target_revision = _revision(previous)

    logger.info("Deployment 롤백: %s/%s", namespace, name)
    retry_on_conflict(_cycle, budget=budget, backoff=backoff, sleep=sleep)
    logger.info("revision %d 으로 롤백 요청 완료", target_revision)
    return target_revision


def unavailable_replicas(apps: Any, namespace: str, name: str) -> int:
    with kube_api_errors(f"Deployment 상태 조회 ({namespace}/{name})"):
        deployment = apps.read_namespaced_deployment_status(name, namespace)
    status = deployment.status
    return int((status.unavailable_replicas if status is not None else 0) or 0)
