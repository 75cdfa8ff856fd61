import os

# GitHub account ids. Dependabot opens the pull requests, Steward is this app.
DEPENDABOT_USER_ID = 49699333
STEWARD_USER_ID = 241759641

CONFIG_FILE_NAME = ".steward.yml"


class Settings:
    # GitHub App config
    app_id: str
    app_private_key: str  # PEM contents (loaded from file path or env)
    webhook_secret: str

    # Server config
    log_level: str = os.getenv("LOG_LEVEL", "INFO")

    # General
    github_api_url: str
    github_timeout_seconds: float
    service_version: str

    # Retry/backoff config
    github_max_attempts: int
    backoff_base_seconds: float
    backoff_factor: float
    max_backoff_seconds: float
    rate_limit_min_remaining: int

    # Check run fan-out
    check_runs_max_workers: int

    def __init__(self) -> None:
        self.app_id = os.getenv("APP_ID", "").strip()
        # APP_PRIVATE_KEY is a filesystem path to the PEM file, or the PEM itself.
        apk_env = os.getenv("APP_PRIVATE_KEY", "").strip()
        pem_contents = apk_env
        if apk_env and os.path.isfile(apk_env):
            with open(apk_env, "r", encoding="utf-8") as f:
                pem_contents = f.read().strip()
        self.app_private_key = pem_contents
        self.webhook_secret = os.getenv("WEBHOOK_SECRET", "").strip()

        # GitHub
        self.github_api_url = os.getenv("GITHUB_API_URL", "https://api.github.com").rstrip("/")
        self.github_timeout_seconds = float(os.getenv("GITHUB_TIMEOUT_SECONDS", "60"))
        self.service_version = os.getenv("SERVICE_VERSION", "dev")

        # Retry/backoff
        self.github_max_attempts = int(os.getenv("GITHUB_MAX_ATTEMPTS", "3"))
        self.backoff_base_seconds = float(os.getenv("BACKOFF_BASE_SECONDS", "1"))
        self.backoff_factor = float(os.getenv("BACKOFF_FACTOR", "2"))
        self.max_backoff_seconds = float(os.getenv("MAX_BACKOFF_SECONDS", "30"))
        self.rate_limit_min_remaining = int(os.getenv("RATE_LIMIT_MIN_REMAINING", "50"))

        self.check_runs_max_workers = max(1, int(os.getenv("CHECK_RUNS_MAX_WORKERS", "8")))


SETTINGS = Settings()
