import os
import subprocess
import sys

# Load environment variables from .env file
from dotenv import load_dotenv

load_dotenv(".env")


def run_backend():
    """Run FastAPI backend (WebSocket listener starts inside on its own port)."""
    port = os.getenv("APP_BACKEND_PORT", "4000")
    subprocess.run([
        sys.executable, "-m", "uvicorn",
        "agroquote.main:app",
        "--host", "0.0.0.0",
        "--port", port,
    ])


if __name__ == "__main__":
    run_backend()
