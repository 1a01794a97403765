from .api import router
from .core.config import settings
from .core.logger import setup_logging
from .core.setup import create_application
from .core.uvicorn_config import setup_uvicorn_logging

# Thiết lập logging từ đầu
setup_logging()
setup_uvicorn_logging()

app = create_application(router=router, settings=settings)
