"""
FastCGI entry point for FastCGIStrategy. Point a WSGI-capable FastCGI
gateway at `application`.

The dispatching worker forwards its store location and APP_MODULE as
request params (see strategies.responder_environment); one job app is
kept per distinct combination.
"""

import logging
import threading
from typing import Optional

from resqueue.context import build_context
from resqueue.settings import Settings, settings
from resqueue_worker.remote import make_job_app

logger = logging.getLogger(__name__)

FORWARDED_PARAMS = {
    "RESQUEUE_REDIS_URL": "REDIS_URL",
    "RESQUEUE_REDIS_NAMESPACE": "REDIS_NAMESPACE",
    "RESQUEUE_APP_MODULE": "APP_MODULE",
}

_apps = {}
_lock = threading.Lock()

def settings_for(environ, base: Optional[Settings] = None) -> Settings:
    base = base or settings
    overrides = {field: environ[param] for param, field in FORWARDED_PARAMS.items() if environ.get(param)}
    return base.model_copy(update=overrides)

def job_app_for(config: Settings):
    key = (config.REDIS_URL, config.REDIS_NAMESPACE, config.APP_MODULE)
    with _lock:
        app = _apps.get(key)
        if app is None:
            logger.info(f"Loading job context (namespace {config.REDIS_NAMESPACE!r}, app module {config.APP_MODULE})")
            app = _apps[key] = make_job_app(build_context(config))
    return app

def application(environ, start_response):
    return job_app_for(settings_for(environ))(environ, start_response)
