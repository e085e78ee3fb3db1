REDIS_ROOM_KEY = "transfer:room:{code}" # room code - reservation or committed room

RESERVATION_PENDING = "pending" # allocated, no uploader yet
RESERVATION_UPLOADING = "uploading" # claimed by exactly one uploader

# **Example `transfer:room:{code}` values (JSON string, TTL = room TTL)**
# - reservation: `{"state": "pending", "created_at": 1760000000.0}`
# - claimed: `{"state": "uploading", "created_at": 1760000000.0}`
# - room: `{"code": ..., "files": [...], "created_at": ..., "expires_at": ...}`
