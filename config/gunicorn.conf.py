"""
Gunicorn configuration file.
"""

import multiprocessing
import os

# Server socket
bind = f"0.0.0.0:{os.getenv('APP_PORT') or '8080'}"
backlog = 2048

# Worker processes. Track file appends are serialised across workers by the
# lock file, so several workers may share one data folder.
workers = int(os.getenv('GUNICORN_WORKERS', multiprocessing.cpu_count() * 2 + 1))
worker_class = 'gthread'
threads = int(os.getenv('GUNICORN_THREADS', 4))
timeout = 30
keepalive = 2

# Logging
accesslog = '-'
errorlog = '-'
loglevel = os.getenv('LOG_LEVEL', 'info').lower()
access_log_format = '%(h)s %(l)s %(u)s %(t)s "%(r)s" %(s)s %(b)s "%(f)s" "%(a)s" %(D)s'

# Process naming
proc_name = 'track-service'

# Trust the X-Forwarded-For header from the proxy in front of the service.
forwarded_allow_ips = os.getenv("FORWARDED_ALLOW_IPS", "127.0.0.1")

# Server mechanics
daemon = False
pidfile = None
umask = 0o022


def on_starting(server):
    """Called just before the master process is initialized."""
    server.log.info("Starting track-service")


def when_ready(server):
    """Called just after the server is started."""
    server.log.info("Listening on port [%s]", bind.rsplit(":", 1)[-1])


def worker_int(worker):
    """Called when a worker receives the INT or QUIT signal."""
    worker.log.info("Worker received INT or QUIT signal")


def post_fork(server, worker):
    """Called just after a worker has been forked."""
    server.log.info("Worker spawned (pid: %s)", worker.pid)


def worker_abort(worker):
    """Called when a worker times out."""
    worker.log.warning("Worker timeout (pid: %s)", worker.pid)
