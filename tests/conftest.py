"""Pytest configuration and fixtures shared across all test modules.

This file is automatically loaded by pytest before running any tests.
Environment variables are set before any import that might build settings.
"""

import os

# CRITICAL: Set these before any imports that might load settings
os.environ["APP_ENV"] = "testing"
os.environ.setdefault("POLYGON_API_KEY", "test-polygon-key")
os.environ.setdefault("POLYGON_BASE_URL", "https://api.polygon.test")
os.environ.setdefault("LOG_LEVEL", "WARNING")
