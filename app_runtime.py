import asyncio
import logging
import os
import threading

import yaml
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from classes.Controller import SessionController
from gateway_client import DEFAULT_TIMEOUT, SessionGateway

logger = logging.getLogger("sprinklr")  # central logger
runtime: "ControllerRuntime | None" = None  # set by init_runtime at startup

DEFAULT_CONF = {
    "api": {"base_url": "http://127.0.0.1:8000/api", "timeout_seconds": DEFAULT_TIMEOUT, "paths": {}},
    "tick_seconds": 1,
    "poll_seconds": 1,
    "web": {"host": "0.0.0.0", "port": 5000, "secret_key": "change-me"},
}


def load_conf(path=None) -> dict:
    path = path or os.environ.get("SPRINKLR_CONF", "sprinklr.yaml")
    conf = {}
    if os.path.exists(path):
        with open(path, "r", encoding="utf-8") as f:
            conf = yaml.safe_load(f) or {}
    else:
        logger.warning("Config %s not found, using defaults", path)

    merged = {**DEFAULT_CONF, **conf}
    for section in ("api", "web"):
        merged[section] = {**DEFAULT_CONF[section], **(conf.get(section) or {})}
    return merged


class ControllerRuntime:
    """
    Runs one SessionController on a private asyncio loop in a daemon thread.

    Request threads never touch the session; they hand coroutines to the loop
    with call() and read back frozen SessionView copies.
    """

    def __init__(self, conf, gateway_factory=None, logger=None):
        self.logger = logger or logging.getLogger(__name__)
        self.conf = conf
        self.gateway_factory = gateway_factory or self._default_gateway

        self.loop = None
        self.scheduler = None
        self.controller = None
        self._thread = None
        self._ready = threading.Event()

    def _default_gateway(self):
        api = self.conf["api"]
        return SessionGateway(
            base_url=api["base_url"],
            timeout=float(api.get("timeout_seconds", DEFAULT_TIMEOUT)),
            paths=api.get("paths") or {},
            logger=self.logger,
        )

    def _new_controller(self):
        return SessionController(
            self.gateway_factory(),
            scheduler=self.scheduler,
            tick_seconds=float(self.conf.get("tick_seconds", 1)),
            logger=self.logger,
        )

    def start(self, timeout=10):
        self._thread = threading.Thread(target=self._loop, name="sprinklr-loop", daemon=True)
        self._thread.start()
        if not self._ready.wait(timeout):
            raise RuntimeError("Controller loop did not start")
        return self.submit(self.controller.load())

    def _loop(self):
        self.loop = asyncio.new_event_loop()
        asyncio.set_event_loop(self.loop)
        self.scheduler = AsyncIOScheduler(event_loop=self.loop)
        self.controller = self._new_controller()
        self.scheduler.start()
        self._ready.set()
        try:
            self.loop.run_forever()
        finally:
            self.scheduler.shutdown(wait=False)
            self.loop.close()

    def submit(self, coro):
        """Schedule a coroutine on the controller loop and return its concurrent future."""
        future = asyncio.run_coroutine_threadsafe(coro, self.loop)
        future.add_done_callback(self._log_failure)
        return future

    def _log_failure(self, future):
        if not future.cancelled() and future.exception() is not None:
            exc = future.exception()
            self.logger.debug("Controller call ended with %s: %s", type(exc).__name__, exc)

    def call(self, fn, *args, timeout=None):
        """Run fn(*args) on the loop (awaiting it if it is a coroutine function) and wait for the result."""

        async def invoke():
            result = fn(*args)
            if asyncio.iscoroutine(result):
                result = await result
            return result

        return self.submit(invoke()).result(timeout)

    def view(self):
        return self.call(lambda: self.controller.view())

    def reset(self):
        """Full reload: drop the current controller and mount a fresh one."""

        async def remount():
            await self.controller.close()
            self.controller = self._new_controller()
            return self.controller

        controller = self.call(remount)
        return self.submit(controller.load())

    def shutdown(self, timeout=5):
        if self.loop is None or not self.loop.is_running():
            return
        self.call(lambda: self.controller.close(), timeout=timeout)
        self.loop.call_soon_threadsafe(self.loop.stop)
        self._thread.join(timeout)


def init_runtime(conf):
    global runtime
    runtime = ControllerRuntime(conf, logger=logger)
    runtime.start()
    return runtime
