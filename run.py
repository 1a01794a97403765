#!/usr/bin/env python
"""
Run the FlowMind API with uvicorn (host/port from HOST / PORT settings).
"""

import sys
from pathlib import Path

import uvicorn

SRC_DIR = Path(__file__).parent.absolute() / "src"
sys.path.insert(0, str(SRC_DIR))

from flowmind.core.config import settings  # noqa: E402

if __name__ == "__main__":
    uvicorn.run(
        "flowmind.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.is_development,
        reload_dirs=[str(SRC_DIR)] if settings.is_development else None,
    )
