import os

import uvicorn

from model_runner.logging_config import setup_logging


def main() -> None:
    setup_logging()
    port = int(os.getenv("PORT", 8765))
    uvicorn.run("model_runner.api:app", host="0.0.0.0", port=port, reload=False, log_config=None)


if __name__ == "__main__":
    main()
