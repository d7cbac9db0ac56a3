# Gunicorn settings for `gunicorn -c gunicorn_conf.py main:app`
import multiprocessing
import os


def _env(name, default, cast=str):
    """Environment override for a setting; blank or unparseable values keep the default"""
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return cast(raw)
    except ValueError:
        return default


bind = f"0.0.0.0:{_env('PORT', 4000, int)}"

# Card rendering is CPU bound; one worker per core plus one
workers = _env("GUNICORN_WORKERS", (multiprocessing.cpu_count() or 1) + 1, int)
worker_class = _env("GUNICORN_WORKER_CLASS", "sync")
keepalive = _env("GUNICORN_KEEPALIVE", 5, int)

# Must outlive PHOTO_FETCH_TIMEOUT plus rendering time
timeout = _env("GUNICORN_TIMEOUT", 60, int)
graceful_timeout = _env("GUNICORN_GRACEFUL_TIMEOUT", 30, int)

accesslog = "-"
errorlog = "-"
loglevel = _env("GUNICORN_LOGLEVEL", _env("LOG_LEVEL", "info").lower())

# Photos arrive base64-encoded in JSON bodies; Flask enforces MAX_CONTENT_LENGTH
limit_request_line = 8190
limit_request_fields = 100
limit_request_field_size = 8190
