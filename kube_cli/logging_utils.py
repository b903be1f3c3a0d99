import logging
import sys


# -v 하나로는 클라이언트 라이브러리의 HTTP 로그까지 보이지 않게 한다.
NOISY_LOGGERS = ("urllib3", "google", "kubernetes", "httpx", "httpcore")


def setup_logging(verbosity: int = 0) -> None:
    level = logging.WARNING
    if verbosity == 1:
        level = logging.INFO
    elif verbosity >= 2:
        level = logging.DEBUG

    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        stream=sys.stderr,
    )

    library_level = logging.DEBUG if verbosity >= 3 else logging.WARNING
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(library_level)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
