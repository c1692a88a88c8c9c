from pydantic import BaseModel
import os

class Settings(BaseModel):
    database_url: str = os.getenv("DATABASE_URL", "sqlite:///./data/users.db")
    redis_url: str = os.getenv("REDIS_URL", "redis://localhost:6379/0")
    task_backend: str = os.getenv("TASK_BACKEND", "redis")  # redis | file | memory
    tasks_dir: str = os.getenv("TASKS_DIR", "./tmp/tasks")
    exports_dir: str = os.getenv("EXPORTS_DIR", "./exports")
    uploads_dir: str = os.getenv("UPLOADS_DIR", "./uploads")
    templates_dir: str = os.getenv("TEMPLATES_DIR", "./templates")
    task_retention_hours: int = int(os.getenv("TASK_RETENTION_HOURS", 24))
    cleanup_interval_seconds: int = int(os.getenv("CLEANUP_INTERVAL_SECONDS", 3600))
    export_batch_size: int = int(os.getenv("EXPORT_BATCH_SIZE", 1000))
    dispatch_confirm_seconds: float = float(os.getenv("DISPATCH_CONFIRM_SECONDS", 3.0))
    job_workers: int = int(os.getenv("JOB_WORKERS", 4))
    store_retry_attempts: int = int(os.getenv("STORE_RETRY_ATTEMPTS", 3))
    store_retry_delay: float = float(os.getenv("STORE_RETRY_DELAY", 0.2))
    max_upload_bytes: int = int(os.getenv("MAX_UPLOAD_BYTES", 50 * 1024 * 1024))
    import_abort_after_unavailable: int = int(os.getenv("IMPORT_ABORT_AFTER_UNAVAILABLE", 10))
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    log_json: bool = os.getenv("LOG_JSON", "false").lower() in {"1", "true", "yes"}

settings = Settings()
