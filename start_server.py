#!/usr/bin/env python3
"""Start the API with uvicorn, honouring the PORT environment variable."""

import logging
import os
import sys

import uvicorn

logging.basicConfig(
    level=os.environ.get("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("start_server")


def main() -> int:
    port = os.environ.get("PORT", "8000")
    try:
        port_int = int(port)
    except ValueError:
        logger.warning(f"Invalid PORT value '{port}', using default 8000")
        port_int = 8000

    src_path = os.path.abspath(os.path.join(os.path.dirname(__file__), "src"))
    if not os.path.isdir(src_path):
        logger.error(f"src directory not found at {src_path}")
        return 1
    if src_path not in sys.path:
        sys.path.insert(0, src_path)

    logger.info(f"Starting server on port {port_int} (src={src_path})")
    # Single worker: tracking sessions live in process memory.
    uvicorn.run(
        "app.main:app",
        host="0.0.0.0",
        port=port_int,
        proxy_headers=True,
        forwarded_allow_ips="*",
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
