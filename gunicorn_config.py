# Configuration Gunicorn pour la Marketplace API
import os

# Nombre de workers
workers = int(os.environ.get('GUNICORN_WORKERS', 2))

worker_class = 'sync'

# Timeout configuration
timeout = 120
keepalive = 5

# Memory management
max_requests = 1000
max_requests_jitter = 100

# Logging
loglevel = 'info'
accesslog = '-'
errorlog = '-'

# Bind configuration
bind = f"0.0.0.0:{os.environ.get('PORT', 5002)}"

# Preload application
preload_app = True

graceful_timeout = 60

forwarded_allow_ips = '*'


def when_ready(server):
    """Callback appelé quand le serveur est prêt"""
    server.log.info("🚀 Serveur Gunicorn prêt pour la Marketplace API")


def worker_init(worker):
    """Callback appelé à l'initialisation de chaque worker"""
    worker.log.info(f"⚡ Worker {worker.pid} initialisé")
