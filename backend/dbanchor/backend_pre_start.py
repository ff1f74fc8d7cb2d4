import logging

from tenacity import (
    after_log,
    before_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_fixed,
)

from dbanchor.core.config import settings
from dbanchor.core.exceptions import NoBackendAvailable
from dbanchor.core.selector import BackendHandle, BackendSelector

logger = logging.getLogger(__name__)

max_tries = 60 * 5  # 5 minutes
wait_seconds = 1


@retry(
    stop=stop_after_attempt(max_tries),
    wait=wait_fixed(wait_seconds),
    retry=retry_if_exception_type(NoBackendAvailable),
    before=before_log(logger, logging.INFO),
    after=after_log(logger, logging.WARN),
)
def init(selector: BackendSelector) -> BackendHandle:
    try:
        return selector.resolve()
    except NoBackendAvailable as e:
        logger.error(e)
        raise e


def main() -> None:
    logging.basicConfig(level=settings.LOG_LEVEL)
    logger.info("Initializing service")
    selector = BackendSelector.from_settings(settings)
    try:
        handle = init(selector)
        logger.info("Backend %s reachable", handle.descriptor.name)
    finally:
        selector.close()
    logger.info("Service finished initializing")


if __name__ == "__main__":
    main()
