import uvicorn

from .app import create_app
from .config import configure_logging, load_settings


def main() -> None:
    settings = load_settings()
    configure_logging(settings)
    uvicorn.run(create_app(settings), host="0.0.0.0", port=8000, log_config=None)


if __name__ == "__main__":
    main()
