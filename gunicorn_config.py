import multiprocessing
import os

# Gunicorn Production Configuration
# Admission is I/O bound (row locks + short queries): (2x CPU) + 1 workers
bind = os.environ.get('BIND', '0.0.0.0:8000')
workers = int(os.environ.get('WEB_CONCURRENCY', multiprocessing.cpu_count() * 2 + 1))
threads = 4
worker_class = 'gthread'

# Backend calls time out in seconds; a request still running after this is stuck
timeout = 30
graceful_timeout = 20
max_requests = 1000
max_requests_jitter = 100
keepalive = 5

# Logging
accesslog = '-'
errorlog = '-'
loglevel = 'info'
capture_output = True
