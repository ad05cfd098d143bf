# gunicorn -c gunicorn.config.py
import os

wsgi_app = "wsgi:app"
bind = "0.0.0.0:{}".format(os.getenv("PORT", "10000"))

# gevent workers; the crypto payment monitor runs as a greenlet per worker
worker_class = "gevent"
workers = int(os.getenv("WEB_CONCURRENCY", "2"))
worker_connections = int(os.getenv("WORKER_CONNECTIONS", "500"))
timeout = int(os.getenv("GUNICORN_TIMEOUT", "90"))
graceful_timeout = 30
keepalive = 5
max_requests = 2000
max_requests_jitter = 200
forwarded_allow_ips = "*"

loglevel = os.getenv("LOG_LEVEL", "info")
accesslog = "-"
errorlog = "-"
