"""
Process-wide logging for the payments API.
Everything under the ``marketplace`` logger goes to stdout as ``key=value`` lines so callback
reconciliation can be traced per transaction reference.
"""
import logging
import sys

DEFAULT_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def setup_logging(level: int | str = logging.INFO, format_string: str = DEFAULT_FORMAT) -> None:
    logging.basicConfig(level=level, format=format_string, stream=sys.stdout, force=True)
    # uvicorn installs its own handlers; only align the levels
    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        logging.getLogger(name).setLevel(level)
    logging.getLogger("marketplace").setLevel(level)
