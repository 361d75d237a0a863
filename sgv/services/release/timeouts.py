from __future__ import annotations

# Remote API round trips
API_TIMEOUT_SECONDS = 30.0

# Presigned storage PUT (large archives)
UPLOAD_TIMEOUT_SECONDS = 30 * 60.0

# Presigned PUT retry policy: delay = min(base * 2**attempt, max)
UPLOAD_RETRY_ATTEMPTS = 3
UPLOAD_RETRY_BASE_SECONDS = 1.0
UPLOAD_RETRY_MAX_SECONDS = 30.0

# Hashing / compression stream chunk sizes
HASH_CHUNK_BYTES = 256 * 1024
ZIP_CHUNK_BYTES = 1024 * 1024
