import os

# gunicorn -c gunicorn.config.py wsgi:app
wsgi_app = "wsgi:app"
worker_class = "gevent"
workers = int(os.getenv("WEB_CONCURRENCY", "4"))
worker_connections = int(os.getenv("WORKER_CONNECTIONS", "1000"))
timeout = int(os.getenv("GUNICORN_TIMEOUT", "120"))
bind = "0.0.0.0:{}".format(os.getenv("PORT", "10000"))

loglevel = os.getenv("LOG_LEVEL", "info")
accesslog = "-"
errorlog = "-"
