import logging

from app.core.config import settings


def _category_enabled(category: str | None) -> bool:
    if not settings.FLOW_LOGS_ENABLED:
        return False
    if category == "import":
        return settings.FLOW_LOGS_IMPORT_ENABLED
    if category == "attachment":
        return settings.FLOW_LOGS_ATTACHMENT_ENABLED
    return True


def flow_info(
    logger: logging.Logger,
    msg: str,
    *args,
    category: str | None = None,
    **kwargs,
) -> None:
    if _category_enabled(category):
        logger.info(msg, *args, **kwargs)


def configure_app_logging() -> None:
    level = logging.getLevelName(settings.LOG_LEVEL)
    if not isinstance(level, int):
        level = logging.INFO
    logging.getLogger("app").setLevel(level)
