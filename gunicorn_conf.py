"""
Gunicorn configuration for the escrow marketplace
Uvicorn workers; each worker runs its own scheduler and connection pool
"""
import os

# Server socket
bind = f"0.0.0.0:{os.getenv('PORT', '5000')}"
backlog = 2048

# Worker processes
workers = int(os.getenv("WEB_CONCURRENCY", "2"))
worker_class = "uvicorn.workers.UvicornWorker"
worker_connections = 1000
max_requests = 10000
max_requests_jitter = 1000
timeout = 120  # Paystack calls are bounded by PAYSTACK_TIMEOUT_SECONDS
keepalive = 30

wsgi_app = "webhook_server:app"

# Logging
accesslog = "-"
errorlog = "-"
loglevel = os.getenv("LOG_LEVEL", "info").lower()
access_log_format = '%(h)s %(l)s %(u)s %(t)s "%(r)s" %(s)s %(b)s "%(f)s" "%(a)s" %(D)s'

proc_name = "escrow_marketplace"

daemon = False
pidfile = None
umask = 0
user = None
group = None
tmp_upload_dir = None

# Each worker builds its own engine and scheduler in the app lifespan
preload_app = False


def on_starting(server):
    print("🚀 Gunicorn master process starting...")


def when_ready(server):
    print(f"✅ Gunicorn ready with {workers} uvicorn workers on {bind}")


def post_fork(server, worker):
    print(f"🔧 Worker {worker.pid} started")


def worker_abort(worker):
    print(f"❌ Worker {worker.pid} aborted")


def worker_exit(server, worker):
    print(f"👋 Worker {worker.pid} exited")
