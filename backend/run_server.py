#!/usr/bin/env python
"""Start the AI router API with consistent logging"""

import os

import uvicorn
from src.core.config import get_settings
from src.core.uvicorn_config import get_uvicorn_log_config

settings = get_settings()

if __name__ == "__main__":
    uvicorn.run(
        "src.api.main:app",
        host=os.getenv("AIROUTER_HOST", "0.0.0.0"),
        port=int(os.getenv("AIROUTER_PORT", "8000")),
        reload=settings.debug,
        log_level="info",
        log_config=get_uvicorn_log_config()
    )
