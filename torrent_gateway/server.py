"""
Torrent Gateway API Server

FastAPI server exposing one normalized torrent API over the daemon named by
CLIENT_TYPE (rtorrent, transmission or qbittorrent).

Usage:
    python -m torrent_gateway.server                # Run on default port 8144
    python -m torrent_gateway.server --port 8080    # Run on custom port
    python -m torrent_gateway.server --reload       # Run with auto-reload (development)
"""

import argparse
import uvicorn
from .logger import logger
from .config import Config


def main():
    parser = argparse.ArgumentParser(
        description="Torrent Gateway API Server",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python run_server.py                    Run on default port 8144 (all interfaces)
  python run_server.py --port 8080        Run on custom port
  python run_server.py --reload           Run with auto-reload (development)
  python run_server.py --host 127.0.0.1   Listen on localhost only

Backend:
  The daemon is configured through the environment (or a .env file):
  CLIENT_TYPE, CLIENT_HOST, CLIENT_PORT, CLIENT_USERNAME, CLIENT_PASSWORD,
  CLIENT_RPC_PATH, CLIENT_USE_SSL. ALLOWED_PATHS limits where torrents may
  be saved and which files may be served.

Endpoints:
    GET  /api/torrents                          Catalog of torrents
    POST /api/torrents/add-urls                 Add magnets or .torrent URLs
    GET  /api/torrents/{hash}/contents/all/data Download a torrent's files
    GET  /health                                Health check
    GET  /docs                                  API documentation
        """
    )

    parser.add_argument(
        "--host",
        type=str,
        default=None,
        help=f"Host to bind to (default: {Config.HOST})"
    )
    parser.add_argument(
        "--port",
        type=int,
        default=None,
        help=f"Port to bind to (default: {Config.PORT})"
    )
    parser.add_argument(
        "--reload",
        action="store_true",
        help="Enable auto-reload (development mode)"
    )

    args = parser.parse_args()

    # Command line args take precedence over environment config
    host = args.host or Config.HOST
    port = args.port or Config.PORT

    logger.info(f"Starting Torrent Gateway API on {host}:{port} ({Config.CLIENT_TYPE})")
    logger.info(f"Documentation available at http://{host}:{port}/docs")

    # One worker: the catalog is per-process state
    uvicorn.run(
        "torrent_gateway.api:app",
        host=host,
        port=port,
        reload=args.reload,
    )


if __name__ == "__main__":
    main()
