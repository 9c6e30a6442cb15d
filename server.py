import uvicorn

from taskboard.config import Settings
from taskboard.main import create_app


def run() -> None:
    settings = Settings()
    uvicorn.run(
        create_app(settings),
        host=settings.HOST,
        port=settings.PORT,
        # the app installs its own access log
        access_log=False,
        log_config=None,
    )


if __name__ == "__main__":
    run()
