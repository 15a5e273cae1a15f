import os


def _env_flag(name: str, default: str = 'false') -> bool:
    return os.environ.get(name, default).strip().lower() in ('1', 'true', 'yes', 'on')


class Config:
    """Application configuration from environment variables."""

    # Flask
    SECRET_KEY = os.environ.get('SECRET_KEY', 'dev-secret-key-change-in-production')
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')
    DEV_DEBUG = _env_flag('DEV_DEBUG')

    # Claude API
    ANTHROPIC_API_KEY = os.environ.get('ANTHROPIC_API_KEY')
    CLAUDE_MODEL = os.environ.get('CLAUDE_MODEL', 'claude-sonnet-4-20250514')
    MAX_PARALLEL_WORKERS = int(os.environ.get('MAX_PARALLEL_WORKERS', 5))
    SIMPLIFY_CHUNK_SIZE = int(os.environ.get('SIMPLIFY_CHUNK_SIZE', 15))

    # File uploads
    UPLOAD_FOLDER = os.environ.get('UPLOAD_FOLDER', './data/uploads')
    MAX_CONTENT_LENGTH = int(os.environ.get('MAX_CONTENT_LENGTH', 50 * 1024 * 1024))  # 50MB

    # Local record store (used when Supabase is not configured)
    DATA_DIR = os.environ.get('DATA_DIR', './data/records')

    # Supabase (PostgREST + Storage)
    SUPABASE_URL = os.environ.get('SUPABASE_URL')
    SUPABASE_ANON_KEY = os.environ.get('SUPABASE_ANON_KEY')
    STORAGE_BUCKET = os.environ.get('STORAGE_BUCKET', 'doculaw')

    # SMS notifications
    SMS_PROVIDER = os.environ.get('SMS_PROVIDER', 'dev')
    TWILIO_ACCOUNT_SID = os.environ.get('TWILIO_ACCOUNT_SID')
    TWILIO_AUTH_TOKEN = os.environ.get('TWILIO_AUTH_TOKEN')
    TWILIO_PHONE_NUMBER = os.environ.get('TWILIO_PHONE_NUMBER')
    CLIENT_PORTAL_URL = os.environ.get('CLIENT_PORTAL_URL', 'http://localhost:5173/client-login')

    # Questionnaire sync and draft persistence
    POLL_INTERVAL_SECONDS = float(os.environ.get('POLL_INTERVAL_SECONDS', 5))
    DRAFT_DEBOUNCE_SECONDS = float(os.environ.get('DRAFT_DEBOUNCE_SECONDS', 1))

    # Word template
    WORD_TEMPLATE_FOLDER = os.environ.get('WORD_TEMPLATE_FOLDER', './templates/word')
