import uvicorn

from dagflow import config

if __name__ == "__main__":
    uvicorn.run(
        "dagflow.main:app",
        host=config.HOST,
        port=config.PORT,
        log_level=config.LOG_LEVEL.lower(),
    )
