"""
Entry point for running the track service with the Flask development server.
"""

import logging

from track_service.app import create_app
from track_service.settings import Settings

logger = logging.getLogger("track_service")


def main(settings=None):
    # For local development (Gunicorn serves track_service.wsgi in production)
    if settings is None:
        settings = Settings()
    app = create_app(settings)
    port = settings.listen_port
    logger.info("Listening on port", extra={"port": port})
    app.run(host='0.0.0.0', port=port, debug=False, threaded=True)


if __name__ == '__main__':
    main()
