"""로깅 설정 — 앱 시작 시 1회 호출"""

import logging

LOG_FORMAT = "[%(asctime)s] [%(levelname)s] [%(name)s] %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# 시트 계산 중 반복되는 디버그 로그가 많은 하위 로거
NOISY_LOGGERS = ("src.core.sheet.migration", "sqlalchemy.engine")


def setup_logging(level: str = "INFO", quiet_noisy: bool = True) -> None:
    """루트 로거 설정.

    quiet_noisy: 마이그레이션 리셋 / SQL 에코 로거를 WARNING으로 제한
    """
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        datefmt=DATE_FORMAT,
    )
    if quiet_noisy and level.upper() != "DEBUG":
        for name in NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
