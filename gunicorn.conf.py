"""
Gunicorn configuration for the ranking API.

Env vars that override defaults:
  PORT     — TCP port to bind
  WORKERS  — number of worker processes (default: 2)

With CACHE_BACKEND=memory every worker keeps its own ranking cache, so an
invalidation only reaches the worker that handled the award. Use
CACHE_BACKEND=redis when running more than one worker.
"""
import os

bind = f"0.0.0.0:{os.environ.get('PORT', '8000')}"

workers = int(os.environ.get("WORKERS", "2"))

# Uvicorn's ASGI event loop inside Gunicorn's process manager.
worker_class = "uvicorn.workers.UvicornWorker"

keepalive = 5

# Ranking reads on large courses can be slow on a cold cache.
timeout = 60

# Request logs come from StructuredLoggingMiddleware; gunicorn only reports errors.
loglevel = os.environ.get("LOG_LEVEL", "info").lower()
accesslog = None
errorlog = "-"

graceful_timeout = 30
