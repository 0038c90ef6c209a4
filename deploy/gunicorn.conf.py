"""
Gunicorn configuration for the championship engine.

Workers may run in separate processes: ranking synchronization is guarded
by a lease stored on the championship row, not by in-process state.
"""
import os
import multiprocessing

# Server socket
bind = os.environ.get("BIND", "0.0.0.0:8000")
backlog = 2048

# Worker processes
workers = int(os.environ.get("WEB_CONCURRENCY", multiprocessing.cpu_count() * 2 + 1))
worker_class = "uvicorn.workers.UvicornWorker"
worker_connections = 1000
# Must exceed SYNC_TIMEOUT_SECONDS so a foreground sync is never killed mid-publish
timeout = int(os.environ.get("GUNICORN_TIMEOUT", 120))
keepalive = 5

# Logging
accesslog = "-"
errorlog = "-"
loglevel = os.environ.get("LOG_LEVEL", "info").lower()
access_log_format = '%(h)s %(l)s %(u)s %(t)s "%(r)s" %(s)s %(b)s "%(f)s" "%(a)s" %(D)s'

# Process naming
proc_name = "championship-engine"

# Server mechanics
daemon = False
pidfile = "/tmp/championship-engine.pid"

# Security
limit_request_line = 4094
limit_request_fields = 100
limit_request_field_size = 8190

wsgi_app = "championship.main:app"
