import os


def _env_int(name: str, default: int, minimum: int = 0) -> int:
    try:
        value = int(str(os.getenv(name, "") or "").strip() or default)
    except ValueError:
        value = default
    return max(minimum, value)


def _env_bool(name: str) -> bool:
    return str(os.getenv(name, "") or "").strip().lower() in {"1", "true", "yes", "y", "on"}


wsgi_app = "webapp:create_app()"
bind = f"{os.getenv('HOST', '0.0.0.0')}:{_env_int('PORT', 5002)}"

# Requests mostly wait on the database and Microsoft Graph.
worker_class = os.getenv("GUNICORN_WORKER_CLASS", "").strip() or "gthread"
threads = _env_int("PYTHON_THREADS", 4, minimum=1)

# The in-process scheduler runs once per worker, so ENABLE_SCHEDULER pins a
# single worker. Scale out with Celery beat or the /api/cron endpoints instead.
if _env_bool("ENABLE_SCHEDULER"):
    workers = 1
else:
    workers = _env_int("WEB_CONCURRENCY", 2, minimum=1)

preload_app = _env_bool("GUNICORN_PRELOAD_APP")
timeout = _env_int("GUNICORN_TIMEOUT", 120, minimum=10)
graceful_timeout = _env_int("GUNICORN_GRACEFUL_TIMEOUT", 30, minimum=5)
keepalive = _env_int("GUNICORN_KEEPALIVE", 30, minimum=1)

accesslog = "-"
errorlog = "-"
loglevel = (os.getenv("GUNICORN_LOG_LEVEL", "") or os.getenv("LOG_LEVEL", "") or "info").strip().lower()

max_requests = _env_int("GUNICORN_MAX_REQUESTS", 1000)
max_requests_jitter = _env_int("GUNICORN_MAX_REQUESTS_JITTER", 50)


def when_ready(server):
    server.log.info("staffing-crm listening on %s with %s worker(s)", bind, workers)
