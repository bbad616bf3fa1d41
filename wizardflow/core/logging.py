import logging
import sys

from wizardflow.core.config import settings

CONTEXT_FIELDS = ("session_id", "stage")


class ContextFormatter(logging.Formatter):
    """Fills in wizard context so records logged without ``extra`` still format."""
    def format(self, record):
        for field in CONTEXT_FIELDS:
            # '-' marks a record logged outside any session
            if not hasattr(record, field):
                setattr(record, field, "-")
        return super().format(record)


def configure_logging(level: str | None = None) -> None:
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(ContextFormatter(
        "%(asctime)s %(levelname)s %(name)s [session_id=%(session_id)s stage=%(stage)s] - %(message)s"
    ))
    logging.basicConfig(
        level=(level or settings.log_level).upper(),
        handlers=[handler],
    )
