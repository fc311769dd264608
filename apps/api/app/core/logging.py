"""Process-wide logging setup."""
from __future__ import annotations

import logging
import os
import warnings

try:
    import absl.logging as absl_logging  # type: ignore
except ImportError:  # pragma: no cover
    absl_logging = None

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def _quiet_third_party() -> None:
    # Gemini's gRPC stack and ctranslate2 log noisily on import.
    os.environ.setdefault("GRPC_VERBOSITY", "ERROR")
    os.environ.setdefault("GRPC_TRACE", "")
    warnings.filterwarnings(
        "ignore",
        message="pkg_resources is deprecated as an API",
        category=UserWarning,
        module="ctranslate2",
    )
    if absl_logging is not None:
        absl_logging.set_verbosity(absl_logging.ERROR)
    for name in ("botocore", "boto3", "httpx"):
        logging.getLogger(name).setLevel(logging.WARNING)


def configure_logging(level: str = "INFO") -> None:
    """Install the root handler once; later calls only adjust the level."""

    resolved = logging.getLevelName(level.upper())
    if not isinstance(resolved, int):
        resolved = logging.INFO
    logging.basicConfig(level=resolved, format=LOG_FORMAT)
    logging.getLogger().setLevel(resolved)
    _quiet_third_party()
