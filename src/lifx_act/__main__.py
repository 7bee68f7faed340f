from __future__ import annotations

import logging
import os

import uvicorn

from lifx_act.config import AppConfig


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    config = AppConfig.from_env()
    uvicorn.run("lifx_act.app:app", host=os.getenv("HOST", "0.0.0.0"), port=config.port, reload=False)


if __name__ == "__main__":
    main()
