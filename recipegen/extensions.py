import importlib
import logging
from concurrent.futures import ThreadPoolExecutor

from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate
import redis as _redis
from rq import Queue

logger = logging.getLogger(__name__)

db = SQLAlchemy()
migrate = Migrate()

# Initialized lazily in create_app
redis_client: _redis.Redis = None  # type: ignore
task_queue: Queue = None  # type: ignore
progress_store = None


class ThreadQueue:
    """In-process queue for development without Redis.

    Runs jobs on a bounded thread pool inside the creating app's context, so
    at most ``max_workers`` batches talk to the upstream model at once.
    """

    def __init__(self, app, max_workers):
        self.app = app
        self.executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="batch-worker"
        )

    def enqueue(self, func, *args, **kwargs):
        # RQ-only options have no meaning here
        for option in ("job_id", "retry", "job_timeout", "result_ttl"):
            kwargs.pop(option, None)
        if isinstance(func, str):
            module_name, attr = func.rsplit(".", 1)
            func = getattr(importlib.import_module(module_name), attr)
        return self.executor.submit(self._run, func, args, kwargs)

    def _run(self, func, args, kwargs):
        with self.app.app_context():
            try:
                return func(*args, **kwargs)
            except Exception:
                logger.exception("Background job %s failed", func.__name__)
                raise


def init_redis(app):
    global redis_client, task_queue, progress_store
    from recipegen.services.progress_service import (
        MemoryProgressStore,
        RedisProgressStore,
    )

    redis_client = None
    redis_url = app.config.get("REDIS_URL", "")
    if not redis_url:
        logger.warning("REDIS_URL not set, using in-process workers (dev mode)")
        _use_local(app, MemoryProgressStore)
        return

    try:
        redis_client = _redis.from_url(redis_url, decode_responses=False)
        redis_client.ping()
        task_queue = Queue("batch-generation", connection=redis_client)
        progress_store = RedisProgressStore(
            redis_client, ttl=app.config["PROGRESS_TTL_SECONDS"]
        )
    except Exception as e:
        logger.warning("Redis connection failed (%s), using in-process workers", e)
        redis_client = None
        _use_local(app, MemoryProgressStore)


def _use_local(app, store_cls):
    global task_queue, progress_store
    task_queue = ThreadQueue(app, app.config["BATCH_WORKER_POOL_SIZE"])
    progress_store = store_cls(ttl=app.config["PROGRESS_TTL_SECONDS"])
