"""Configuration settings for the image folder server."""
import os

# Directory paths
STORAGE_ROOT = os.getenv("STORAGE_ROOT", "./images")
TEMP_DIR = os.getenv("TEMP_DIR", "./temp")
LOGS_DIR = os.getenv("LOGS_DIR", "logs")

# Listening address
HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "3000"))

# Upload constraints
MAX_UPLOAD_SIZE = int(os.getenv("MAX_UPLOAD_SIZE", str(10 * 1024 * 1024)))  # 10MB
MAX_NAME_LENGTH = int(os.getenv("MAX_NAME_LENGTH", "255"))

# Storage failure alerting
FAILURE_THRESHOLD = int(os.getenv("FAILURE_THRESHOLD", "5"))
FAILURE_WINDOW_SECONDS = int(os.getenv("FAILURE_WINDOW_SECONDS", "60"))

# Streaming
CHUNK_SIZE = 8192
