import logging

import uvicorn

from .config import Settings
from .main import create_app

settings = Settings.from_env()
logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
uvicorn.run(create_app(settings), host="0.0.0.0", port=settings.port)
