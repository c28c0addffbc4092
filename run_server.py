#!/usr/bin/env python3
"""Run the tutor policy API server."""

import logging
import os

import uvicorn


def main():
    logging.basicConfig(
        level=os.environ.get('TUTOR_LOG_LEVEL', 'INFO'),
        format='%(asctime)s %(levelname)s %(name)s: %(message)s'
    )
    logging.getLogger(__name__).info("API documentation available at: http://localhost:8000/docs")
    uvicorn.run(
        "server.app:app",
        host="0.0.0.0",
        port=8000,
        reload=True
    )


if __name__ == "__main__":
    main()
