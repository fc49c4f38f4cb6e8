"""python -m sysinv.services.api"""

import uvicorn

from sysinv.services.api.main import build_app
from sysinv.services.shared.config import load_settings


def main() -> None:
    settings = load_settings()
    uvicorn.run(build_app(settings), host=settings.server_host, port=settings.server_port)


if __name__ == "__main__":
    main()
