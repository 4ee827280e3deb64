import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
import modal
import config, persistence, web

app = modal.App("nossl-check")

volume = modal.Volume.from_name("nossl-counters-vol", create_if_missing=True)
logs_volume = modal.Volume.from_name("nossl-app-logs", create_if_missing=True)

app_image = (modal.Image.debian_slim(python_version="3.12")
    .pip_install("python-fasthtml>=0.12.36", "redis>=5.3.0", "pytz", "aiosqlite", "pycountry", "python-dotenv")
    .env({"COUNTER_BACKEND": "sqlite", "SQLITE_DB_PATH": "/data/counters.db", "LOGS_DIR": "/logs"})
    .add_local_python_source("analytics", "config", "fasthtml_components", "geo", "persistence", "redirect", "web"))


def setup_logging(logs_dir=config.LOGS_DIR):
    """Rotating file log in logs_dir plus console output"""
    Path(logs_dir).mkdir(parents=True, exist_ok=True)
    logger = logging.getLogger(config.LOGGER_NAME)
    logger.setLevel(logging.INFO)
    logger.handlers = []

    file_handler = RotatingFileHandler(f"{logs_dir}/app.log", maxBytes=10*1024*1024, backupCount=5) # 10MB
    file_handler.setFormatter(logging.Formatter('[%(asctime)s] [%(levelname)s] %(message)s'))

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(logging.Formatter('[%(levelname)s] %(message)s'))

    logger.addHandler(file_handler)
    logger.addHandler(console_handler)
    return logger


@app.function(image=app_image, max_containers=1, volumes={"/data": volume, config.LOGS_DIR: logs_volume}, timeout=3600)
@modal.concurrent(max_inputs=1000)
@modal.asgi_app()
def serve():
    # max_containers=1: the counter store assumes a single writer process
    logger = setup_logging()
    logger.info("=" * 60)
    logger.info("🚀 nossl-check starting")
    logger.info("=" * 60)

    async def commit_volumes():
        try:
            await volume.commit.aio()
            await logs_volume.commit.aio()
            logger.info("Volumes committed - counters persisted")
        except Exception as e: logger.warning(f"Error committing volumes: {e}")

    return web.create_app(persistence.open_counter_store(), shutdown_hooks=[commit_volumes])


if __name__ == "__main__":
    import uvicorn
    setup_logging("./logs")
    uvicorn.run(web.create_app(persistence.open_counter_store()), host="0.0.0.0", port=config.PORT)
