"""
ReplyGuard - Web Server Entry Point
===================================

Run this to start the JSON API:
    python main.py

Then open http://127.0.0.1:8000/docs in your browser.

To run a review sync from the command line:
    python run_sync.py
"""

import logging

import uvicorn

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)s - %(message)s'
)


def main():
    """Start the web server."""
    print("\n" + "=" * 50)
    print("   ReplyGuard - API Server")
    print("=" * 50)
    print("\n   Starting server at http://127.0.0.1:8000")
    print("   Press Ctrl+C to stop\n")

    uvicorn.run(
        "replyguard.web.app:app",
        host="127.0.0.1",
        port=8000,
        reload=True,
        log_level="info"
    )


if __name__ == "__main__":
    main()
