#!/usr/bin/env python3
"""
Simple run script for the Workflow Engine.

Usage:
    python run.py

Or with custom settings:
    HOST=127.0.0.1 PORT=8080 GEMINI_API_KEY=... python run.py
"""

import uvicorn
import os


def main():
    """Run the FastAPI application."""
    host = os.getenv("HOST", "0.0.0.0")
    port = int(os.getenv("PORT", "8000"))
    reload = os.getenv("RELOAD", "true").lower() == "true"

    print(f"""
╔═══════════════════════════════════════════════════════════════╗
║                      Promptflow                               ║
║                                                               ║
║  An execution engine for visual AI workflows                  ║
╠═══════════════════════════════════════════════════════════════╣
║  Server:    http://{host}:{port}                                 ║
║  API Docs:  http://{host}:{port}/docs                            ║
║  Stream:    ws://{host}:{port}/ws/run                            ║
╚═══════════════════════════════════════════════════════════════╝
    """)

    uvicorn.run(
        "promptflow.main:app",
        host=host,
        port=port,
        reload=reload,
        log_level="info",
    )


if __name__ == "__main__":
    main()
