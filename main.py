import uvicorn

from sidellama.config import get_config
from sidellama.main import app


def main():
    config = get_config()
    uvicorn.run(app, host="127.0.0.1", port=8000, log_level=config.log_level.lower())


if __name__ == "__main__":
    main()
