import logging

import uvicorn

from .app import create_app
from .core.config import Config


def main() -> None:
    config = Config()

    # Configure logging
    logging.basicConfig(
        level=config.LOG_LEVEL.upper(),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.StreamHandler(),
        ]
    )

    uvicorn.run(
        create_app(config),
        host=config.HOST,
        port=config.PORT,
        proxy_headers=True,
        forwarded_allow_ips="*",
        log_level=config.LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    main()
