"""Uvicorn entrypoint: ``uvicorn studio.main:app``. No business logic; only wiring."""

import logging

from dotenv import load_dotenv

load_dotenv()

from studio.app import create_app  # noqa: E402

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
    datefmt="%Y-%m-%dT%H:%M:%SZ",
)

app = create_app()
