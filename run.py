#!/usr/bin/env python3
"""
Entry point for the TeamTrack API.

Usage:
    python run.py

Environment Variables:
    FLASK_ENV: development, production or testing (default: development)
    PORT: Port to run on (default: 5000)
    LOG_LEVEL: overrides the configured log level
"""
import logging
import os


def run_api():
    """Run the API server."""
    from teamtrack.app import create_app

    app = create_app()
    logging.basicConfig(
        level=app.config.get('LOG_LEVEL', 'INFO'),
        format='%(asctime)s %(levelname)s %(name)s: %(message)s'
    )

    port = int(os.getenv('PORT', 5000))
    debug = app.config.get('DEBUG', False)

    logging.getLogger(__name__).info(f"Starting TeamTrack API on port {port}...")
    app.run(host='0.0.0.0', port=port, debug=debug)


if __name__ == '__main__':
    run_api()
