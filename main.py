"""Thin launcher so platform auto-detection (main.py) starts the admin API."""
import os

os.execvp("uvicorn", [
    "uvicorn", "ingest.admin_api:app",
    "--host=0.0.0.0",
    "--port=" + os.environ.get("PORT", "8000"),
])
