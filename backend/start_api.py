#!/usr/bin/env python3
"""
devcrm API Startup Script

Starts the devcrm FastAPI server with auto-reload for local development.
"""

import sys
from pathlib import Path

import uvicorn


def main():
    """Start the devcrm API server."""
    print("Starting devcrm API server...")
    print("   Swagger UI:  http://localhost:8000/docs")
    print("   ReDoc:       http://localhost:8000/redoc")
    print("   Admin Panel: http://localhost:8000/admin")
    print("")

    if not Path(".env").exists():
        print("WARNING: No .env file found!")
        print("   Run `python generate_keys.py` or create a .env with at least:")
        print("   JWT_SECRET=...")
        print("   TOKEN_ENCRYPTION_KEY=...")
        print("   DATABASE_URL=postgresql://...")
        print("")

    try:
        uvicorn.run(
            "devcrm.main:app",
            host="0.0.0.0",
            port=8000,
            reload=True,
            reload_dirs=["devcrm"],
            log_level="info"
        )
    except KeyboardInterrupt:
        print("\nShutting down devcrm API server...")
    except Exception as e:
        print(f"Error starting server: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
