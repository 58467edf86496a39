import os

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./signdesk.db")
MINIO_ENDPOINT = os.getenv("MINIO_ENDPOINT", "minio:9000")
MINIO_ACCESS_KEY = os.getenv("MINIO_ACCESS_KEY", "minioadmin")
MINIO_SECRET_KEY = os.getenv("MINIO_SECRET_KEY", "minioadmin")
MINIO_BUCKET = os.getenv("MINIO_BUCKET", "signdesk")
MINIO_SECURE = os.getenv("MINIO_SECURE", "false").lower() in ("1", "true", "yes")
SECRET_KEY = os.getenv("SECRET_KEY", "devsecret")
ADMIN_ACCESS_TOKEN = os.getenv("ADMIN_ACCESS_TOKEN")
REDIS_URL = os.getenv("REDIS_URL", "redis://redis:6379/0")
WORKER_QUEUE = os.getenv("WORKER_QUEUE", "signing")
SEAL_ASYNC = os.getenv("SEAL_ASYNC", "false").lower() in ("1", "true", "yes")
WEB_BASE_URL = os.getenv("WEB_BASE_URL", "http://localhost:3000")
SIGNING_TOKEN_MAX_AGE = int(os.getenv("SIGNING_TOKEN_MAX_AGE", str(7 * 24 * 60 * 60)))
MAX_UPLOAD_MB = int(os.getenv("MAX_UPLOAD_MB", "10"))
STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY", "")
STRIPE_WEBHOOK_SECRET = os.getenv("STRIPE_WEBHOOK_SECRET", "")
DOCUSEAL_TOKEN = os.getenv("DOCUSEAL_TOKEN", "")
DOCUSEAL_WEBHOOK_SECRET = os.getenv("DOCUSEAL_WEBHOOK_SECRET", "")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
