# Gunicorn configuration for the CaneMap records backend
# Run with: gunicorn -c canemap_backend/gunicorn.conf.py "canemap_backend.app:create_app()"
#
# Record subscriptions are held per worker process, so a user's session
# lives in whichever worker served POST /api/records/session. Keep a single
# worker unless requests are pinned to workers upstream.

import os

port = os.environ.get('PORT', '5000')
bind = f"0.0.0.0:{port}"
backlog = 2048

workers = int(os.environ.get('WEB_CONCURRENCY', '1'))
worker_class = 'gthread'
threads = int(os.environ.get('GUNICORN_THREADS', '8'))
max_requests = 0

# Report rendering and upload can take a while on large fields
timeout = 120
keepalive = 30
graceful_timeout = 60

accesslog = '-'
errorlog = '-'
loglevel = 'info'
access_log_format = '%(h)s %(l)s %(u)s %(t)s "%(r)s" %(s)s %(b)s "%(f)s" "%(a)s" %(D)s'

proc_name = 'canemap-records'

limit_request_line = 4094
limit_request_fields = 100
limit_request_field_size = 8190


def when_ready(server):
    server.log.info("CaneMap records backend ready. Listening on %s", server.address)


def worker_exit(server, worker):
    server.log.info("Worker exiting (pid: %s)", worker.pid)
