# backend/main.py
# uvicorn main:app --host 0.0.0.0 --port 20006 --reload
import logging
import os

from services.sos.main import app

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO"),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

__all__ = ["app"]
