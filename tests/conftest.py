"""Pytest configuration and fixtures shared across all test modules.

This file is automatically loaded by pytest before running any tests.
It pins the environment so settings never come from a developer's .env file.
"""

import os

# CRITICAL: Set this before any imports that might load settings
os.environ["WINDOWLIMIT_ENV"] = "testing"

# Set default env vars that all tests might need
os.environ.setdefault("WINDOWLIMIT_BACKEND", "memory")
os.environ.setdefault("WINDOWLIMIT_KEY_PREFIX", "ratelimit-test")
os.environ.setdefault("WINDOWLIMIT_LOG_LEVEL", "DEBUG")
