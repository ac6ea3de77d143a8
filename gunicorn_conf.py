import os

bind = f"0.0.0.0:{os.getenv('PORT', '8080')}"
worker_class = "uvicorn.workers.UvicornWorker"
workers = int(os.getenv("WEB_CONCURRENCY", "2"))

# a worker delivery runs at most one page plus its quality retries before suspending
timeout = int(os.getenv("GUNICORN_TIMEOUT", "900"))
graceful_timeout = 120
keepalive = 75
threads = 2

# recycle workers to bound memory growth
max_requests = int(os.getenv("MAX_REQUESTS", "1000"))
max_requests_jitter = int(os.getenv("MAX_REQUESTS_JITTER", "100"))

# Cloud Run captures stdout
accesslog = "-"
errorlog = "-"
loglevel = os.getenv("LOG_LEVEL", "info").lower()
