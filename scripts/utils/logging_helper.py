"""A basic logging helper shared by the map tools."""
import logging
import sys

NOISY_LOGGERS = ("aiohttp.access", "urllib3", "fiona", "pyogrio")


def setup_logging(level: int | str = logging.INFO) -> None:
    """Configures stdout logging; accepts a level name such as "DEBUG"."""
    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(levelname)s: %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
        force=True,
    )
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))
