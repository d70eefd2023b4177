"""Process-wide logging setup."""

import logging
from typing import Union

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Client libraries that log every request at DEBUG
NOISY_LOGGERS = ("boto3", "botocore", "s3transfer", "urllib3")


def configure_logging(level: Union[str, int] = "INFO", debug: bool = False) -> None:
    """
    Configure root logging and tame the AWS client loggers.

    With ``debug`` the AWS libraries log at DEBUG too, which includes
    signed request details. Keep it off outside local troubleshooting.
    """
    if isinstance(level, str):
        name = level.upper()
        level = logging.getLevelName(name)
        if not isinstance(level, int):
            raise ValueError(f"Unknown log level: {name}")

    logging.basicConfig(format=LOG_FORMAT, level=level)
    logging.getLogger().setLevel(level)

    library_level = logging.DEBUG if debug else logging.WARNING
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(library_level)
