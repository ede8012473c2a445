"""Run the duochat server: ``python -m duochat``."""
import uvicorn

from duochat.config import get_config


def main() -> None:
    config = get_config()
    uvicorn.run(
        "duochat.main:app",
        host=config.server.host,
        port=config.server.port,
        log_level=config.logging.level.lower(),
    )


if __name__ == "__main__":
    main()
