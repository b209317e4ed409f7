#!/usr/bin/env python3
"""
Quick runner for CaseBridge
===========================

Usage:
    python -m casebridge.run
"""

import uvicorn

from .config import get_settings

if __name__ == "__main__":
    print("Starting CaseBridge...")
    print("API docs: http://localhost:8000/docs")
    print("Health:   http://localhost:8000/health")
    print()

    uvicorn.run(
        "casebridge.api:app",
        host="0.0.0.0",
        port=8000,
        reload=get_settings().is_development,
    )
