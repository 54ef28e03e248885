import os
from dotenv import load_dotenv

load_dotenv()


def _int(name, default):
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return int(value)


def _float(name, default):
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return float(value)


def _bool(name, default):
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _list(name, default):
    value = os.getenv(name)
    if not value:
        return list(default)
    return [item.strip() for item in value.split(",") if item.strip()]


class Config:
    SQLALCHEMY_DATABASE_URI = os.getenv("DATABASE_URL")
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {"pool_pre_ping": True}

    # Cache (advisory; every entry is backed by storage)
    REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")
    CACHE_ENABLED = _bool("CACHE_ENABLED", True)
    CACHE_TIMEOUT = _float("CACHE_TIMEOUT", 3.0)
    BLOCK_CACHE_TTL = _int("BLOCK_CACHE_TTL", 900)
    UNREAD_CACHE_TTL = _int("UNREAD_CACHE_TTL", 300)
    EPHEMERAL_KEY_CACHE_TTL = _int("EPHEMERAL_KEY_CACHE_TTL", 60)

    # Swipes
    SWIPES_PER_HOUR = _int("SWIPES_PER_HOUR", 100)
    SWIPES_PER_DAY = _int("SWIPES_PER_DAY", 1000)
    SUPER_LIKES_PER_DAY = _int("SUPER_LIKES_PER_DAY", 5)

    # Conversations
    MESSAGES_MAX_TEXT_LENGTH = _int("MESSAGES_MAX_TEXT_LENGTH", 2000)
    MESSAGES_MAX_CAPTION_LENGTH = _int("MESSAGES_MAX_CAPTION_LENGTH", 500)
    MESSAGES_MAX_LOCATION_DESCRIPTION = _int("MESSAGES_MAX_LOCATION_DESCRIPTION", 200)
    MESSAGES_MAX_SYSTEM_LENGTH = _int("MESSAGES_MAX_SYSTEM_LENGTH", 1000)
    MESSAGES_PAGE_SIZE = _int("MESSAGES_PAGE_SIZE", 50)
    MESSAGES_MAX_PAGE_SIZE = _int("MESSAGES_MAX_PAGE_SIZE", 100)
    CHAT_MESSAGES_PER_MINUTE = _int("CHAT_MESSAGES_PER_MINUTE", 30)
    CHAT_MESSAGES_PER_HOUR = _int("CHAT_MESSAGES_PER_HOUR", 500)
    CHAT_MESSAGES_PER_DAY = _int("CHAT_MESSAGES_PER_DAY", 2000)
    CHAT_CONVERSATIONS_PER_DAY = _int("CHAT_CONVERSATIONS_PER_DAY", 50)
    CHAT_PHOTOS_PER_DAY = _int("CHAT_PHOTOS_PER_DAY", 20)

    # Ephemeral photos (durations in seconds)
    EPHEMERAL_MAX_FILE_SIZE = _int("EPHEMERAL_MAX_FILE_SIZE", 5 * 1024 * 1024)
    EPHEMERAL_ALLOWED_TYPES = _list("EPHEMERAL_ALLOWED_TYPES", ["image/jpeg", "image/png", "image/webp"])
    EPHEMERAL_DEFAULT_DURATION = _int("EPHEMERAL_DEFAULT_DURATION", 30)
    EPHEMERAL_MAX_DURATION = _int("EPHEMERAL_MAX_DURATION", 300)
    EPHEMERAL_VIEW_DURATION = _int("EPHEMERAL_VIEW_DURATION", 30)
    EPHEMERAL_ACCESS_KEY_LENGTH = _int("EPHEMERAL_ACCESS_KEY_LENGTH", 32)
    EPHEMERAL_RETENTION_PERIOD = _int("EPHEMERAL_RETENTION_PERIOD", 24 * 3600)
    EPHEMERAL_CLEANUP_INTERVAL = _int("EPHEMERAL_CLEANUP_INTERVAL", 60)
    EPHEMERAL_JOB_BATCH_SIZE = _int("EPHEMERAL_JOB_BATCH_SIZE", 100)
    EPHEMERAL_UPLOADS_PER_HOUR = _int("EPHEMERAL_UPLOADS_PER_HOUR", 10)
    EPHEMERAL_VIEWS_PER_HOUR = _int("EPHEMERAL_VIEWS_PER_HOUR", 50)

    # Moderation rules
    MODERATION_AUTO_SUSPEND_THRESHOLD = _int("MODERATION_AUTO_SUSPEND_THRESHOLD", 5)
    MODERATION_AUTO_BAN_THRESHOLD = _int("MODERATION_AUTO_BAN_THRESHOLD", 10)
    MODERATION_AUTO_SUSPEND_DURATION = os.getenv("MODERATION_AUTO_SUSPEND_DURATION", "7d")
    MODERATION_AUTO_BAN_DURATION = os.getenv("MODERATION_AUTO_BAN_DURATION", "permanent")
    MODERATION_THRESHOLD_WINDOW = _int("MODERATION_THRESHOLD_WINDOW", 30 * 24 * 3600)
    MODERATION_REPORT_THRESHOLD = _int("MODERATION_REPORT_THRESHOLD", 3)
    MODERATION_SEVERITY_THRESHOLD = _int("MODERATION_SEVERITY_THRESHOLD", 7)
    MODERATION_INITIAL_REPUTATION = _int("MODERATION_INITIAL_REPUTATION", 100)
    MODERATION_MIN_REPUTATION = _int("MODERATION_MIN_REPUTATION", 0)
    MODERATION_MAX_REPUTATION = _int("MODERATION_MAX_REPUTATION", 1000)
    MODERATION_DISMISS_REPUTATION_DELTA = _int("MODERATION_DISMISS_REPUTATION_DELTA", 5)
    MODERATION_WARN_REPUTATION_DELTA = _int("MODERATION_WARN_REPUTATION_DELTA", -10)
    MODERATION_SUSPEND_REPUTATION_DELTA = _int("MODERATION_SUSPEND_REPUTATION_DELTA", -25)
    MODERATION_BAN_REPUTATION_DELTA = _int("MODERATION_BAN_REPUTATION_DELTA", -50)
    MODERATION_REACTIVATE_MATCHES_ON_APPEAL = _bool("MODERATION_REACTIVATE_MATCHES_ON_APPEAL", False)

    # Moderation rate limits
    MODERATION_REPORTS_PER_MINUTE = _int("MODERATION_REPORTS_PER_MINUTE", 5)
    MODERATION_REPORTS_PER_HOUR = _int("MODERATION_REPORTS_PER_HOUR", 50)
    MODERATION_REPORTS_PER_DAY = _int("MODERATION_REPORTS_PER_DAY", 200)
    MODERATION_REPORTS_PER_PAIR_PER_DAY = _int("MODERATION_REPORTS_PER_PAIR_PER_DAY", 3)
    MODERATION_BLOCKS_PER_MINUTE = _int("MODERATION_BLOCKS_PER_MINUTE", 10)
    MODERATION_BLOCKS_PER_HOUR = _int("MODERATION_BLOCKS_PER_HOUR", 100)
    MODERATION_BLOCKS_PER_DAY = _int("MODERATION_BLOCKS_PER_DAY", 500)
    MODERATION_APPEALS_PER_MINUTE = _int("MODERATION_APPEALS_PER_MINUTE", 2)
    MODERATION_APPEALS_PER_HOUR = _int("MODERATION_APPEALS_PER_HOUR", 10)
    MODERATION_APPEALS_PER_DAY = _int("MODERATION_APPEALS_PER_DAY", 20)

    # Content classifier (Gemini)
    GEMINI_API_KEY = os.getenv("GEMINI_API_KEY")
    CLASSIFIER_ENABLED = _bool("CLASSIFIER_ENABLED", bool(os.getenv("GEMINI_API_KEY")))
    CLASSIFIER_MODEL = os.getenv("CLASSIFIER_MODEL", "gemini-1.5-flash")
    CLASSIFIER_REJECT_THRESHOLD = _float("CLASSIFIER_REJECT_THRESHOLD", 0.75)
    CLASSIFIER_FALLBACK_THRESHOLD = _float("CLASSIFIER_FALLBACK_THRESHOLD", 0.60)
    CLASSIFIER_TIMEOUT = _float("CLASSIFIER_TIMEOUT", 30.0)

    # Object storage signer
    STORAGE_BASE_URL = os.getenv("STORAGE_BASE_URL", "http://localhost:9000/photos")
    STORAGE_SIGNING_SECRET = os.getenv("STORAGE_SIGNING_SECRET", "")
    STORAGE_TIMEOUT = _float("STORAGE_TIMEOUT", 5.0)

    # Background sweepers
    SWEEPERS_ENABLED = _bool("SWEEPERS_ENABLED", False)
    SWEEPER_MAX_BACKOFF = _int("SWEEPER_MAX_BACKOFF", 300)
    SWEEPER_LEASE_TTL = _int("SWEEPER_LEASE_TTL", 60)
    SANCTION_SWEEP_INTERVAL = _int("SANCTION_SWEEP_INTERVAL", 60)
    RECONCILE_INTERVAL = _int("RECONCILE_INTERVAL", 3600)

    # Email (Resend)
    RESEND_API_KEY = os.getenv("RESEND_API_KEY")
    RESEND_FROM_EMAIL = os.getenv("RESEND_FROM_EMAIL", "safety@pathtoforever.local")
    EMAIL_TIMEOUT = _float("EMAIL_TIMEOUT", 15.0)

    # Auth / webhooks
    CLERK_FRONTEND_API = os.getenv("CLERK_FRONTEND_API")
    CLERK_JWT_AUDIENCE = os.getenv("CLERK_JWT_AUDIENCE")
    CLERK_WEBHOOK_SECRET = os.getenv("CLERK_WEBHOOK_SECRET", "")


class TestingConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    SQLALCHEMY_ENGINE_OPTIONS = {}
    CACHE_ENABLED = False
    CLASSIFIER_ENABLED = False
    SWEEPERS_ENABLED = False
    STORAGE_BASE_URL = "https://storage.test/photos"
    STORAGE_SIGNING_SECRET = "test-signing-secret"
    RESEND_API_KEY = None
