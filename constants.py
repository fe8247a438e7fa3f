import os

HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", 8000))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FILE = os.getenv("LOG_FILE", None)

# Max members per room instance; further joins spill into another room of the same type
ROOM_CAPACITY = int(os.getenv("ROOM_CAPACITY", 5))

# Seconds after the first join before a waiting room starts on its own
AUTO_START_SECONDS = float(os.getenv("AUTO_START_SECONDS", 5 * 60))

CORS_ORIGINS = [origin.strip() for origin in os.getenv("CORS_ORIGINS", "*").split(",") if origin.strip()]
