from __future__ import annotations

import os

import uvicorn

from cadence.config_manager import ConfigManager
from cadence.logging_setup import setup_logging


def main() -> None:
    config = ConfigManager(os.getenv("CADENCE_CONFIG_PATH", "config.yaml")).load_effective()
    setup_logging(config.logging)
    uvicorn.run(
        "cadence.web_api:create_app",
        factory=True,
        host=config.server.host,
        port=config.server.port,
        reload=False,
    )


if __name__ == "__main__":
    main()
