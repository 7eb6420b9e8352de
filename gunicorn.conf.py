"""
InvoicePro Gunicorn configuration.

Threaded workers; the invoice email pool runs inside each worker process, so
requests that queue background sends return immediately.
"""

import logging
import multiprocessing
import os

IS_PRODUCTION = os.getenv("PRODUCTION") == "true"

logging.basicConfig(
    level=logging.INFO if IS_PRODUCTION else logging.DEBUG,
    format='[%(asctime)s] %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


# =============================================================================
# SERVER
# =============================================================================

PORT = int(os.getenv("PORT", 8000))
bind = [f"0.0.0.0:{PORT}"]

workers = int(os.getenv("WEB_CONCURRENCY", min(multiprocessing.cpu_count() * 2 + 1, 9)))
worker_class = "gthread"
threads = int(os.getenv("GUNICORN_THREADS", 4))

# Restart workers periodically; jitter avoids restarting all at once.
max_requests = int(os.getenv("GUNICORN_MAX_REQUESTS", 1000))
max_requests_jitter = int(os.getenv("GUNICORN_MAX_REQUESTS_JITTER", 100))

timeout = 120
graceful_timeout = int(os.getenv("GUNICORN_GRACEFUL_TIMEOUT", 30))
keepalive = 5

limit_request_line = 8190
limit_request_fields = 100
limit_request_field_size = 8190

# The email thread pool must be created after fork, never in the master.
preload_app = False

forwarded_allow_ips = os.getenv("FORWARDED_ALLOW_IPS", "*")
if IS_PRODUCTION:
    secure_scheme_headers = {"X-FORWARDED-PROTO": "https"}


# =============================================================================
# LOGGING
# =============================================================================

accesslog = "-"
errorlog = "-"
loglevel = "info" if IS_PRODUCTION else "debug"
capture_output = True

access_log_format = (
    '%(h)s %(l)s %(u)s %(t)s "%(r)s" %(s)s %(b)s '
    '"%(f)s" "%(a)s" request_id=%({x-request-id}o)s response_time=%(D)s_us'
)

proc_name = "invoicepro"


# =============================================================================
# HOOKS
# =============================================================================

def when_ready(server):
    logger.info(f"Gunicorn ready at {server.address} with {workers} workers x {threads} threads")


def on_exit(server):
    logger.info("Gunicorn shutting down")
