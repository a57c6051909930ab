"""
Process entry point: serves the business API and the metrics listener.
"""

import asyncio
import uvicorn
import structlog

from .config import get_settings
from .main import configure_logging, create_app, create_metrics_app
from .services.metrics import MetricsCollector

logger = structlog.get_logger(__name__)


async def serve() -> None:
    settings = get_settings()
    configure_logging(settings)

    metrics = MetricsCollector(window_size=settings.metrics_window_size)
    app = create_app(settings, metrics=metrics)
    metrics_app = create_metrics_app(metrics)

    servers = [
        uvicorn.Server(uvicorn.Config(
            app,
            host=settings.server_host,
            port=settings.server_port,
            log_level=settings.log_level.lower(),
        )),
        uvicorn.Server(uvicorn.Config(
            metrics_app,
            host=settings.server_host,
            port=settings.metrics_port,
            log_level=settings.log_level.lower(),
            lifespan="off",
        )),
    ]

    logger.info("listeners_starting", api_port=settings.server_port, metrics_port=settings.metrics_port)
    await asyncio.gather(*(server.serve() for server in servers))


def main() -> None:
    asyncio.run(serve())


if __name__ == "__main__":
    main()
