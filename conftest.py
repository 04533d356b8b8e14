"""
Pytest configuration.
Forces the in-memory SQLite configuration before any app module is imported.
"""
import os

# Set testing environment before importing app
os.environ["TESTING"] = "True"
os.environ["DEBUG"] = "False"
