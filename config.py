import os


def _database_url():
    database_url = os.environ.get("DATABASE_URL", "sqlite:///hotel.db")
    # Heroku/Render style URLs
    if database_url.startswith("postgres://"):
        database_url = database_url.replace("postgres://", "postgresql://", 1)
    return database_url


def _bool_env(name, default):
    value = os.environ.get(name)
    if value is None:
        return default
    return value.lower() in ('1', 'true', 'yes', 'on')


class Config:
    SECRET_KEY = os.environ.get("SESSION_SECRET", "hotel_backoffice_secret_key")
    JWT_SECRET_KEY = os.environ.get("JWT_SECRET_KEY", "change-me-jwt-secret")
    JWT_EXPIRATION_HOURS = 8

    SQLALCHEMY_DATABASE_URI = _database_url()
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_recycle": 300,
        "pool_pre_ping": True,
    } if SQLALCHEMY_DATABASE_URI.startswith("postgresql") else {}

    MAIL_SERVER = os.environ.get("MAIL_SERVER", "smtp.gmail.com")
    MAIL_PORT = int(os.environ.get("MAIL_PORT", 587))
    MAIL_USE_TLS = _bool_env("MAIL_USE_TLS", True)
    MAIL_USERNAME = os.environ.get("MAIL_USERNAME")
    MAIL_PASSWORD = os.environ.get("MAIL_PASSWORD")
    MAIL_DEFAULT_SENDER = os.environ.get("MAIL_DEFAULT_SENDER", os.environ.get("MAIL_USERNAME"))

    SENDGRID_API_KEY = os.environ.get("SENDGRID_API_KEY")
    EMAIL_FROM = os.environ.get("EMAIL_FROM", "reservations@hotel.local")

    SITE_NAME = os.environ.get("SITE_NAME", "Hotel Back Office")
    SITE_URL = os.environ.get("SITE_URL", "http://localhost:5000")
    HOTEL_TIMEZONE = os.environ.get("HOTEL_TIMEZONE", "Africa/Blantyre")
    INVOICE_DIR = os.environ.get("INVOICE_DIR", os.path.join(os.getcwd(), "invoices"))
    CORS_ORIGINS = [o.strip() for o in os.environ.get(
        "CORS_ORIGINS", "http://localhost:*,http://127.0.0.1:*").split(",") if o.strip()]
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "DEBUG")
    SEED_DATA = _bool_env("SEED_DATA", True)


class TestConfig(Config):
    TESTING = True
    SECRET_KEY = "test-secret"
    JWT_SECRET_KEY = "test-jwt-secret"
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    SQLALCHEMY_ENGINE_OPTIONS = {}
    MAIL_SUPPRESS_SEND = True
    MAIL_DEFAULT_SENDER = "frontdesk@hotel.test"
    SENDGRID_API_KEY = None
    SEED_DATA = False
    LOG_LEVEL = "WARNING"
