#!/usr/bin/env python3
"""
Torrent Gateway Server Runner

Simple script to run the Torrent Gateway API server.

This is a convenience wrapper around torrent_gateway.server.main().
Use this script from the project root to start the server.

Usage:
    python run_server.py               # Run on default port
    python run_server.py --port 8080   # Run on custom port
    python run_server.py --reload      # Run with auto-reload (development)
"""

from torrent_gateway.server import main

if __name__ == "__main__":
    main()
