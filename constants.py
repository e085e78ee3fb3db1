import os

REDIS_HOST = os.getenv("REDIS_HOST", "localhost")
REDIS_PORT = int(os.getenv("REDIS_PORT", 6379))
REDIS_PASSWORD = os.getenv("REDIS_PASSWORD", None)

# memory | redis | listing
ROOM_BACKEND = os.getenv("ROOM_BACKEND", "memory").lower()
# memory | local | s3
STORAGE_BACKEND = os.getenv("STORAGE_BACKEND", "local").lower()

UPLOAD_DIR = os.getenv("UPLOAD_DIR", "uploads")

S3_BUCKET = os.getenv("S3_BUCKET", None)
S3_REGION = os.getenv("S3_REGION", "us-east-1")
S3_ENDPOINT_URL = os.getenv("S3_ENDPOINT_URL", None)
AWS_ACCESS_KEY_ID = os.getenv("AWS_ACCESS_KEY_ID", None)
AWS_SECRET_ACCESS_KEY = os.getenv("AWS_SECRET_ACCESS_KEY", None)

# Periodic sweep on top of the lazy one; 0 disables it
SWEEP_INTERVAL_SECONDS = int(os.getenv("SWEEP_INTERVAL_SECONDS", 60))

ALLOWED_ORIGINS = os.getenv("ALLOWED_ORIGINS", "*").split(",")

# Fixed, not configurable
ROOM_CODE_LENGTH = 6
ROOM_CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
ROOM_TTL_SECONDS = 10 * 60
MAX_FILE_SIZE_BYTES = 50 * 1024 * 1024 * 1024
ROOM_KEY_PREFIX = "transfer/rooms/"
