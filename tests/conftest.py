"""
Environment defaults so app.core.config.Settings can load without a .env file.
Real services are never contacted: tests use sqlite, MagicMock redis and in-memory fakes.
"""
import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/15")
os.environ.setdefault("CELERY_BROKER_URL", "memory://")
os.environ.setdefault("CELERY_RESULT_BACKEND", "cache+memory://")
os.environ.setdefault("APP_ENV", "test")
