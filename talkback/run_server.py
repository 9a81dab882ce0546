import logging
import sys

from talkback.config import Config, setup_logging
from talkback.errors import TalkbackError

logger = logging.getLogger("talkback")


def main():
    setup_logging()

    missing = Config.validate()
    if missing:
        logger.error("Cannot start: missing required settings:")
        for item in missing:
            logger.error("  - %s", item)
        sys.exit(1)

    import uvicorn
    from talkback.main import create_app

    try:
        app = create_app()
    except TalkbackError as e:
        logger.error("Cannot start: %s", e)
        sys.exit(1)

    logger.info("Starting Talkback on %s:%d (transcription=%s, completion=%s)",
                Config.HOST, Config.PORT, Config.TRANSCRIPTION_PROVIDER, Config.COMPLETION_PROVIDER)
    uvicorn.run(app, host=Config.HOST, port=Config.PORT, log_level=Config.LOG_LEVEL.lower())


if __name__ == "__main__":
    main()
