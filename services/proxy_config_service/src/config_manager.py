import asyncio
import inspect
import logging
from contextlib import asynccontextmanager
from typing import Awaitable, Iterable, List, Optional, Protocol, Tuple, Union
from uuid import uuid4

from fastapi import FastAPI, HTTPException, Request, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from shared.common_utils import logger
from . import config_loader
from .checksum import checksum, has_changed
from .errors import ConfigError, SubscriberUpdateError
from .metrics import ConfigMetrics, default_metrics
from .option_source import OptionSource
from .schemas import (
    ConfigStatusResponse,
    ReloadOutcome,
    ReloadState,
    ReloadStatus,
    Snapshot,
    SubscriberFailure,
)
from .settings import ConfigServiceSettings
from .validator import validate

_LOG_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


class OptionsUpdater(Protocol):
    """A service component that applies new configuration snapshots."""

    def update_options(self, snapshot: Snapshot) -> Union[None, Awaitable[None]]:
        ...


def _subscriber_name(subscriber: OptionsUpdater) -> str:
    return getattr(subscriber, "name", None) or type(subscriber).__name__


class ConfigManager:
    """
    Owns the last-good snapshot, reloads it when the option source changes
    and fans real changes out to the registered subscribers.
    """

    def __init__(
        self,
        source: OptionSource,
        subscribers: Iterable[OptionsUpdater] = (),
        subscriber_timeout: Optional[float] = None,
        metrics: Optional[ConfigMetrics] = None,
        apply_log_level: bool = True,
    ):
        self.source = source
        self.metrics = metrics or default_metrics
        self._subscribers: List[OptionsUpdater] = list(subscribers)
        self._subscriber_timeout = subscriber_timeout
        self._apply_log_level = apply_log_level
        self._snapshot: Optional[Snapshot] = None
        self._checksum: str = ""
        self._state = ReloadState.IDLE
        self._last_outcome: Optional[ReloadOutcome] = None
        self._reload_lock = asyncio.Lock()
        self._stop_event: Optional[asyncio.Event] = None
        self._watch_task: Optional[asyncio.Task] = None
        self._subscribed_to_source = False

    @property
    def snapshot(self) -> Snapshot:
        if self._snapshot is None:
            raise RuntimeError("config manager has not been started")
        return self._snapshot

    @property
    def checksum(self) -> str:
        return self._checksum

    @property
    def state(self) -> ReloadState:
        return self._state

    @property
    def last_outcome(self) -> Optional[ReloadOutcome]:
        return self._last_outcome

    @property
    def subscribers(self) -> Tuple[OptionsUpdater, ...]:
        return tuple(self._subscribers)

    def register(self, subscriber: OptionsUpdater) -> None:
        self._subscribers.append(subscriber)
        logger.debug(f"Registered config subscriber {_subscriber_name(subscriber)}")

    async def start(self, watch: bool = True) -> None:
        """
        Loads the initial snapshot and optionally starts watching the option
        source. Load or validation errors propagate: there is nothing to fall
        back to at startup.
        """
        snapshot = await self._load_snapshot()
        digest = checksum(snapshot)
        self._publish(snapshot, digest)
        self.metrics.set_config_info(snapshot.services.value, True, digest)
        if watch:
            self._start_watcher()
        logger.info(f"Config manager started (services={snapshot.services.value}, checksum={digest})")

    async def stop(self) -> None:
        """Stops the watcher. A reload already in flight runs to completion."""
        if self._watch_task:
            self._stop_event.set()
            # a watcher failure was already reported by _on_watcher_done
            await asyncio.gather(self._watch_task, return_exceptions=True)
            self._watch_task = None
        logger.info("Config manager stopped")

    async def reload(self) -> ReloadOutcome:
        """Runs one reload cycle. Cycles never overlap."""
        if self._snapshot is None:
            raise RuntimeError("config manager must be started before reloading")
        async with self._reload_lock:
            logger.set_reload_id(uuid4().hex[:8])
            self._state = ReloadState.RELOADING
            try:
                outcome = await self._reload()
            finally:
                self._state = ReloadState.IDLE
            self._last_outcome = outcome
            return outcome

    async def _reload(self) -> ReloadOutcome:
        try:
            new_snapshot = await self._load_snapshot()
        except ConfigError as e:
            logger.error(f"config: could not reload configuration: {e}")
            self.metrics.set_config_info(self._snapshot.services.value, False, "")
            return ReloadOutcome(
                status=ReloadStatus.INVALID, valid=False, checksum=self._checksum, error=str(e)
            )

        new_checksum = checksum(new_snapshot)
        logger.debug(f"config: checksum change old-checksum={self._checksum} new-checksum={new_checksum}")

        if not has_changed(self._checksum, new_checksum):
            self._state = ReloadState.UNCHANGED
            logger.debug("config: loaded configuration has not changed")
            # a revert to the last-good config clears an earlier invalid signal
            self.metrics.set_config_info(self._snapshot.services.value, True, self._checksum)
            return ReloadOutcome(status=ReloadStatus.UNCHANGED, valid=True, checksum=self._checksum)

        self._state = ReloadState.PROPAGATING
        self._publish(new_snapshot, new_checksum)
        notified, failures = await self._notify_subscribers(new_snapshot)

        service = new_snapshot.services.value
        if failures:
            self.metrics.set_config_info(service, False, "")
            logger.warning(f"config: {len(failures)} of {len(self._subscribers)} subscribers failed to update")
            status = ReloadStatus.PARTIALLY_FAILED
        else:
            self.metrics.set_config_info(service, True, new_checksum)
            logger.info(f"config: propagated configuration {new_checksum} to {len(notified)} subscribers")
            status = ReloadStatus.PROPAGATED
        return ReloadOutcome(
            status=status, valid=True, checksum=new_checksum, notified=notified, failures=failures
        )

    async def _load_snapshot(self) -> Snapshot:
        raw = await config_loader.load(self.source)
        return validate(raw)

    def _publish(self, snapshot: Snapshot, digest: str) -> None:
        self._snapshot = snapshot
        self._checksum = digest
        if self._apply_log_level:
            self._set_log_level(snapshot)
        self.metrics.record_snapshot(snapshot, digest)

    def _set_log_level(self, snapshot: Snapshot) -> None:
        if snapshot.debug:
            logger.setLevel(logging.DEBUG)
            return
        level = _LOG_LEVELS.get(snapshot.log_level.lower())
        if level is None:
            logger.warning(f"config: unknown log level {snapshot.log_level!r}, keeping current level")
            return
        logger.setLevel(level)

    async def _notify_subscribers(
        self, snapshot: Snapshot
    ) -> Tuple[List[str], List[SubscriberFailure]]:
        """Calls every subscriber in registration order, isolating failures."""
        notified: List[str] = []
        failures: List[SubscriberFailure] = []
        for subscriber in self._subscribers:
            name = _subscriber_name(subscriber)
            try:
                result = subscriber.update_options(snapshot)
                if inspect.isawaitable(result):
                    if self._subscriber_timeout is not None:
                        await asyncio.wait_for(result, timeout=self._subscriber_timeout)
                    else:
                        await result
            except Exception as e:
                error = SubscriberUpdateError(name, e)
                logger.error(f"config: {error}")
                failures.append(SubscriberFailure(subscriber=name, error=repr(e)))
                continue
            notified.append(name)
        return notified, failures

    def _start_watcher(self) -> None:
        if self._watch_task:
            return
        if not self._subscribed_to_source:
            self.source.subscribe_to_changes(self._on_source_change)
            self._subscribed_to_source = True
        self._stop_event = asyncio.Event()
        self._watch_task = asyncio.create_task(self.source.run(self._stop_event))
        self._watch_task.add_done_callback(self._on_watcher_done)

    def _on_watcher_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"config: watching the option source failed, reloads on change have stopped: {error!r}")

    async def _on_source_change(self, changes) -> None:
        try:
            await self.reload()
        except Exception as e:
            # keep watching: the next change gets another chance
            logger.error(f"config: reload after {changes} failed unexpectedly: {e!r}")

    def get_status(self) -> ConfigStatusResponse:
        snapshot = self.snapshot
        return ConfigStatusResponse(
            state=self._state,
            services=snapshot.services,
            checksum=self._checksum,
            policy_count=len(snapshot.policies),
            last_outcome=self._last_outcome,
        )


def build_config_manager(settings: ConfigServiceSettings) -> ConfigManager:
    source = OptionSource(config_file=settings.CONFIG_FILE, env_file=settings.ENV_FILE)
    # a pinned service log level overrides the level carried by each snapshot
    if settings.LOG_LEVEL:
        logger.setLevel(settings.LOG_LEVEL.upper())
    return ConfigManager(
        source,
        subscriber_timeout=settings.SUBSCRIBER_TIMEOUT,
        apply_log_level=not settings.LOG_LEVEL,
    )


# FastAPI app setup
@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for FastAPI app."""
    settings = ConfigServiceSettings()
    config_manager = build_config_manager(settings)
    # Startup
    await config_manager.start(watch=settings.WATCH_CONFIG)
    app.state.config_manager = config_manager
    yield
    # Shutdown
    await config_manager.stop()


app = FastAPI(title="Proxy Config Manager Service", lifespan=lifespan)


def _manager(request: Request) -> ConfigManager:
    manager = getattr(request.app.state, "config_manager", None)
    if manager is None:
        raise HTTPException(status_code=503, detail="Config manager is not running")
    return manager


@app.get("/api/v1/config/status")
async def get_config_status(request: Request) -> ConfigStatusResponse:
    return _manager(request).get_status()


@app.post("/api/v1/config/reload")
async def reload_config(request: Request) -> ReloadOutcome:
    return await _manager(request).reload()


@app.get("/metrics")
async def get_metrics(request: Request) -> Response:
    registry = _manager(request).metrics.registry
    return Response(content=generate_latest(registry), media_type=CONTENT_TYPE_LATEST)


if __name__ == "__main__":
    import uvicorn

    settings = ConfigServiceSettings()
    uvicorn.run(app, host=settings.API_HOST, port=settings.API_PORT)
