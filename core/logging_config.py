import logging

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(level: str = "INFO") -> None:
    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(level=level.upper(), format=LOG_FORMAT)
    else:
        root.setLevel(level.upper())
    # SQL echo is noisy at INFO; keep it opt-in.
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
