import os
from dotenv import load_dotenv

load_dotenv()


class Config:
    """Base configuration class with common settings."""
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key")

    # Flow automation engine
    FLOW_DISPATCH_WORKERS = int(os.environ.get("FLOW_DISPATCH_WORKERS", "4"))
    FLOW_RULE_WORKERS = int(os.environ.get("FLOW_RULE_WORKERS", "10"))
    FLOW_RULE_TIMEOUT_SECONDS = float(os.environ.get("FLOW_RULE_TIMEOUT_SECONDS", "30"))
    # Advisory only: the UI shows this countdown, execution is not delayed by it
    FLOW_COUNTDOWN_SECONDS = int(os.environ.get("FLOW_COUNTDOWN_SECONDS", "10"))
    FLOW_SCAN_INTERVAL_MINUTES = int(os.environ.get("FLOW_SCAN_INTERVAL_MINUTES", "60"))
    FLOW_SCHEDULER_ENABLED = os.environ.get("FLOW_SCHEDULER_ENABLED", "false").lower() == "true"

    # Outbound email (send_email action)
    EMAIL_API_URL = os.environ.get("EMAIL_API_URL", "https://api.resend.com/emails")
    EMAIL_API_KEY = os.environ.get("EMAIL_API_KEY")
    EMAIL_FROM = os.environ.get("EMAIL_FROM", "Flows <noreply@example.com>")
    EMAIL_TIMEOUT_SECONDS = int(os.environ.get("EMAIL_TIMEOUT_SECONDS", "10"))

    # Used to build {{card.url}}
    SITE_URL = os.environ.get("SITE_URL", "http://localhost:8000")

    # CORS configuration
    CORS_ORIGINS = os.environ.get("CORS_ORIGINS", "*")

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
    LOG_FILE = os.environ.get("LOG_FILE")


class LocalConfig(Config):
    """Configuration for local development."""
    ENV = "local"
    DEBUG = True


class SandboxConfig(Config):
    """Configuration for sandbox/staging environment."""
    ENV = "sandbox"
    DEBUG = False


class ProductionConfig(Config):
    """Configuration for production environment."""
    ENV = "production"
    DEBUG = False
    FLOW_SCHEDULER_ENABLED = os.environ.get("FLOW_SCHEDULER_ENABLED", "true").lower() == "true"


class TestingConfig(Config):
    """Configuration for the test suite."""
    ENV = "testing"
    DEBUG = False
    TESTING = True
    SECRET_KEY = "test-secret-key"
    FLOW_DISPATCH_WORKERS = 2
    FLOW_RULE_WORKERS = 4
    FLOW_RULE_TIMEOUT_SECONDS = 5
    FLOW_SCHEDULER_ENABLED = False
    EMAIL_API_KEY = None


CONFIG_BY_ENV = {
    "local": LocalConfig,
    "development": LocalConfig,
    "dev": LocalConfig,
    "sandbox": SandboxConfig,
    "staging": SandboxConfig,
    "stage": SandboxConfig,
    "production": ProductionConfig,
    "prod": ProductionConfig,
    "testing": TestingConfig,
    "test": TestingConfig,
}


def get_config():
    """Config class for FLASK_ENV (or ENVIRONMENT); unknown names fall back to LocalConfig."""
    env = (os.environ.get("FLASK_ENV") or os.environ.get("ENVIRONMENT", "local")).lower()
    return CONFIG_BY_ENV.get(env, LocalConfig)
