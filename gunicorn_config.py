# Gunicorn configuration for Sector Ops
# Usage: gunicorn -c gunicorn_config.py sector_ops.http_server:app
import os

# Server socket
bind = os.environ.get("SECTOR_OPS_HOST", "127.0.0.1") + ":" + os.environ.get("SECTOR_OPS_PORT", "8000")
backlog = 2048

# Worker processes, ASGI via uvicorn worker
workers = int(os.environ.get("SECTOR_OPS_WORKERS", "2"))
worker_class = "uvicorn.workers.UvicornWorker"
# Roster generation waits on every route sheet fetch
timeout = 60
graceful_timeout = 30
keepalive = 2

# Logging
accesslog = os.environ.get("SECTOR_OPS_ACCESS_LOG", "-")
errorlog = os.environ.get("SECTOR_OPS_ERROR_LOG", "-")
loglevel = os.environ.get("SECTOR_OPS_LOG_LEVEL", "info")
access_log_format = '%({x-forwarded-for}i)s %(l)s %(u)s %(t)s "%(r)s" %(s)s %(b)s "%(f)s" "%(a)s"'

# Process naming
proc_name = "sector-ops"

# Server mechanics
daemon = False
pidfile = None
