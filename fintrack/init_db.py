# init_db.py (creates an empty database under DATA_DIR without starting the server)
import logging

from .config import Settings
from .database import create_engine_for, init_db


def main() -> None:
    settings = Settings.from_env()
    logging.basicConfig(level=settings.log_level)
    engine = create_engine_for(settings)
    try:
        init_db(engine)
    finally:
        engine.dispose()


if __name__ == "__main__":
    main()
