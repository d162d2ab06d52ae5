#!/usr/bin/env python
"""
Server entrypoint for the grading billing API
"""
import uvicorn

from grading_billing.app import app  # noqa: F401
from grading_billing.config import config


if __name__ == "__main__":
    uvicorn.run(
        "grading_billing.app:app",
        host="0.0.0.0",
        port=config.PORT,
        reload=config.is_dev,
    )
