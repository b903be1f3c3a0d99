import os
import sys
from typing import Dict, NoReturn, Type

import click

from . import __version__
from .config import DeployConfig, RuntimeSettings, load_env_files
from .errors import (
    ChecksumMismatchError,
    ConfigError,
    ConflictExhaustedError,
    FormatError,
    KubeCliError,
    MissingInputError,
    NetworkError,
    NotFoundError,
    OperationCancelledError,
    RemoteOperationFailedError,
)
from .github_release import GitHubReleaseSource
from .logging_utils import setup_logging, get_logger
from .orchestrator import DeploymentPipeline, Rollback
from .progress import StepReporter
from .updater import ReleaseUpdater, current_executable


logger = get_logger(__name__)

_PERMISSION_HINT = (
    "인터넷 연결과 GOOGLE_APPLICATION_CREDENTIALS 에 지정한 서비스 계정의 권한"
    "({role})을 확인한 뒤 '{cmd}' 를 다시 실행하세요."
)

# 예외 종류 -> 사용자 안내 문구. stage 별 안내가 있으면 그쪽이 우선한다.
HINTS: Dict[Type[KubeCliError], str] = {
    ConfigError: "kubecli.yaml 을 찾거나 읽을 수 없습니다. 'kube-cli validate' 로 설정 파일을 점검하세요.",
    MissingInputError: "프로젝트 루트에 Dockerfile 을 추가하세요.",
    ChecksumMismatchError: "내려받은 파일이 손상되었습니다. 잠시 후 'kube-cli update' 를 다시 실행하세요.",
    FormatError: "원격 서비스 응답 형식이 예상과 다릅니다. 잠시 후 다시 시도하세요.",
    NotFoundError: "kubecli.yaml 의 deployment / container 이름이 클러스터와 일치하는지 확인하세요.",
    RemoteOperationFailedError: "빌드 로그를 확인하여 문제를 고친 뒤 다시 실행하세요.",
    ConflictExhaustedError: "다른 작업이 같은 Deployment 를 수정하고 있습니다. 잠시 후 다시 실행하세요.",
    OperationCancelledError: "작업이 취소되었습니다. 원격 작업은 계속 진행될 수 있습니다.",
}

STAGE_HINTS: Dict[str, str] = {
    "upload": _PERMISSION_HINT.format(role="Storage Admin", cmd="kube-cli deploy"),
    "build": _PERMISSION_HINT.format(role="Cloud Build Service Account", cmd="kube-cli deploy"),
    "rollout": _PERMISSION_HINT.format(role="Kubernetes Engine Admin", cmd="kube-cli deploy"),
    "rollback": _PERMISSION_HINT.format(role="Kubernetes Engine Admin", cmd="kube-cli rollback"),
}

CONFIG_STAGE_HINTS: Dict[str, str] = {
    "package": ".kubecliignore 의 패턴을 확인하세요. (단독 '!' 나 '/' 같은 패턴은 쓸 수 없습니다)",
    "settings": ".env 또는 환경 변수의 KUBECLI_* 값을 확인하세요. (간격은 0보다 크고 MAX 는 INITIAL 이상)",
}


def hint_for(error: KubeCliError) -> str:
    if isinstance(error, RemoteOperationFailedError) and error.log_url:
        return f"빌드 로그를 확인하여 문제를 고친 뒤 다시 실행하세요: {error.log_url}"
    if isinstance(error, NetworkError):
        stage_hint = STAGE_HINTS.get(error.stage or "")
        if stage_hint:
            return stage_hint
        return "인터넷 연결을 확인한 뒤 다시 실행하세요."
    if isinstance(error, ConfigError) and error.stage in CONFIG_STAGE_HINTS:
        return CONFIG_STAGE_HINTS[error.stage]
    for kind, hint in HINTS.items():
        if isinstance(error, kind):
            return hint
    return "명령을 다시 실행하세요."


def _fail(error: Exception) -> NoReturn:
    click.echo(f"[ERROR] {error}", err=True)
    if isinstance(error, KubeCliError):
        click.echo(f"✖ {hint_for(error)}", err=True)
    sys.exit(1)


@click.group()
@click.option(
    "-C",
    "--chdir",
    "chdir",
    type=click.Path(file_okay=False, dir_okay=True, exists=True),
    default=".",
    help="프로젝트 루트 디렉토리 (기본: 현재 디렉토리)",
)
@click.option(
    "-v",
    "--verbose",
    count=True,
    help="로그를 자세히 출력합니다. (-v: INFO, -vv: DEBUG)",
)
@click.version_option(__version__, prog_name="kube-cli")
@click.pass_context
def main(ctx: click.Context, chdir: str, verbose: int) -> None:
    """Kubernetes(GKE) 배포 도구: Cloud Build 로 이미지를 만들고 Deployment 에 배포한다."""
    setup_logging(verbose)
    ctx.ensure_object(dict)
    ctx.obj["chdir"] = chdir
    ctx.obj["verbose"] = verbose


def _settings_from_ctx(ctx: click.Context) -> RuntimeSettings:
    base_dir: str = ctx.obj["chdir"]
    load_env_files(base_dir)
    try:
        return RuntimeSettings.from_env()
    except ConfigError as e:
        e.stage = "settings"
        _fail(e)


@main.command()
@click.pass_context
def deploy(ctx: click.Context) -> None:
    """프로젝트를 빌드하여 GKE Deployment 에 배포"""
    settings = _settings_from_ctx(ctx)
    pipeline = DeploymentPipeline(ctx.obj["chdir"], reporter=StepReporter(), settings=settings)
    try:
        result = pipeline.run()
    except KubeCliError as e:
        logger.debug("배포 실패 (stage=%s)", e.stage, exc_info=True)
        _fail(e)
    except OSError as e:
        logger.exception("배포 중 파일 처리 오류")
        _fail(e)

    click.echo(f"배포 완료: {result.image} (build {result.build_id})")


@main.command()
@click.option(
    "-a",
    "--async",
    "async_",
    is_flag=True,
    help="롤백 완료를 기다리지 않습니다.",
)
@click.pass_context
def rollback(ctx: click.Context, async_: bool) -> None:
    """Deployment 를 이전 revision 으로 롤백"""
    settings = _settings_from_ctx(ctx)
    workflow = Rollback(ctx.obj["chdir"], reporter=StepReporter(), settings=settings)
    try:
        workflow.run(wait=not async_)
    except KubeCliError as e:
        logger.debug("롤백 실패 (stage=%s)", e.stage, exc_info=True)
        _fail(e)


@main.command()
@click.pass_context
def update(ctx: click.Context) -> None:
    """kube-cli 를 최신 릴리스로 업데이트"""
    settings = _settings_from_ctx(ctx)
    updater = ReleaseUpdater(
        GitHubReleaseSource(settings.release_url),
        current_version=__version__,
        executable_path=current_executable(),
        reporter=StepReporter(),
    )
    try:
        result = updater.run()
    except (KubeCliError, OSError) as e:
        logger.debug("업데이트 실패 (state=%s)", updater.history[-2].name, exc_info=True)
        _fail(e)

    if not result.updated:
        click.echo("이미 최신 버전입니다.")


@main.command()
@click.pass_context
def validate(ctx: click.Context) -> None:
    """kubecli.yaml 설정 값 점검"""
    base_dir: str = ctx.obj["chdir"]
    if not os.path.isfile(os.path.join(base_dir, "Dockerfile")):
        click.echo("! 프로젝트 루트에 Dockerfile 이 없습니다. (deploy 전에 추가해야 합니다)", err=True)

    try:
        cfg = DeployConfig.load(base_dir)
    except ConfigError as e:
        _fail(e)

    problems = cfg.validate()
    for p in problems:
        click.echo(f"✖ {p}", err=True)
    if problems:
        click.echo("✖ kubecli.yaml 설정이 올바르지 않습니다.", err=True)
        sys.exit(1)

    click.echo("✓ kubecli.yaml 설정이 올바릅니다.")
