import os

# ---------------- Infrastructure ----------------
DATABASE_URL = os.getenv("DATABASE_URL")
RABBIT_URL = os.getenv("RABBIT_URL")

# ---------------- Queues ----------------
ORDER_QUEUE = os.getenv("ORDER_QUEUE", "order.process")

# ---------------- Retry tuning ----------------
MAX_RETRIES = int(os.getenv("MAX_RETRIES", "5"))
BASE_RETRY_TTL_MS = int(os.getenv("BASE_RETRY_TTL_MS", "2000"))    # 2s
MAX_RETRY_TTL_MS = int(os.getenv("MAX_RETRY_TTL_MS", "60000"))     # 60s cap

STORE_RETRY_ATTEMPTS = int(os.getenv("STORE_RETRY_ATTEMPTS", "3"))
STORE_RETRY_DELAY_SECONDS = float(os.getenv("STORE_RETRY_DELAY_SECONDS", "0.2"))

# ---------------- Worker ----------------
PROCESSING_DELAY_SECONDS = float(os.getenv("PROCESSING_DELAY_SECONDS", "1.0"))
WORKER_CONCURRENCY = int(os.getenv("WORKER_CONCURRENCY", "1"))
RECONNECT_DELAY_SECONDS = float(os.getenv("RECONNECT_DELAY_SECONDS", "2.0"))
RECOVERY_GRACE_SECONDS = float(os.getenv("RECOVERY_GRACE_SECONDS", "60"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# ---------------- API ----------------
API_HOST = os.getenv("API_HOST", "0.0.0.0")
API_PORT = int(os.getenv("API_PORT", "8000"))
