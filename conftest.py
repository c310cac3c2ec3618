"""
Pytest configuration.
Switches the app to its testing setup (in-memory SQLite, fake Redis, eager Celery)
before any application module is imported.
"""
import os

# Set testing environment before importing app
os.environ["TESTING"] = "True"
os.environ["DEBUG"] = "False"
os.environ.setdefault("HOSTING_API_TOKEN", "")
