"""Entry point for the Airavat service.

``uvicorn airavat.main:app`` serves the module-level application; running
the module directly starts uvicorn on ``API_HOST:API_PORT``.
"""

import uvicorn

from airavat.core.application import create_application
from airavat.core.config.settings import settings
from airavat.core.initialization import initialize_application

initialize_application()

app = create_application()


if __name__ == "__main__":
    uvicorn.run(app, host=settings.API_HOST, port=settings.API_PORT, log_config=None)
