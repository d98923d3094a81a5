"""Run the command surface: ``python -m agentdesk_ai``."""

import uvicorn

from agentdesk_ai.core.config import get_settings
from agentdesk_ai.core.logging_config import setup_logging


def main() -> None:
    settings = get_settings()
    setup_logging(settings.logging.level, settings.logging.format, settings.logging.file_dir)
    uvicorn.run(
        "agentdesk_ai.server.main:app",
        host=settings.server.host,
        port=settings.server.port,
        log_config=None,
    )


if __name__ == "__main__":
    main()
