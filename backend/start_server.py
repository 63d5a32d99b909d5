"""
Simple server starter script.
Run this from command line: python start_server.py  (or the ``hitchbuddy`` command)
"""
import logging
import os
import sys

# Add current directory to path
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from config import config  # noqa: E402
from app import create_app  # noqa: E402


logger = logging.getLogger('start_server')


def main():
    host = os.getenv('HOST', '127.0.0.1')
    port = int(os.getenv('PORT', '5000'))

    app = create_app()

    logger.info("Starting %s", config.APP_NAME)
    logger.info("Database: %s", 'PostgreSQL' if app.db.use_postgres else app.db.db_path)
    logger.info("API base: http://%s:%s/api/", host, port)

    # Run without reloader to avoid issues on Windows
    app.run(
        host=host,
        port=port,
        debug=False,
        use_reloader=False,
        threaded=True
    )


if __name__ == '__main__':
    main()
