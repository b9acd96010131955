from os import environ
from datetime import datetime
from zoneinfo import ZoneInfo
from contextvars import ContextVar
from logging import Filter, Formatter, StreamHandler, Logger, LogRecord
from colorlog import ColoredFormatter


class SingletonMeta(type):
    _instance = {}

    def __call__(cls, *args, **kwargs):
        if cls not in cls._instance:
            instance = super().__call__(*args, **kwargs)
            cls._instance[cls] = instance
        return cls._instance[cls]


class _ReloadIdFilter(Filter):
    """Stamps every record with the reload cycle it was emitted from."""

    def __init__(self, var: ContextVar):
        super().__init__()
        self._var = var

    def filter(self, record: LogRecord) -> bool:
        record.reload_id = self._var.get() or "-"
        return True


class ProxyConfigLogger(Logger, metaclass=SingletonMeta):
    reload_id_var = ContextVar("reload_id", default=None)
    _initialized = False

    def __init__(self):
        if ProxyConfigLogger._initialized:
            return

        super().__init__(name="ProxyConfigLogger", level=environ.get("LOG_LEVEL", "NOTSET").upper())

        self._tz = ZoneInfo(environ.get("LOG_TIMEZONE", "UTC"))
        Formatter.converter = self.local_time
        local_formatter = ColoredFormatter(
            "%(log_color)s%(asctime)s | %(levelname)s | %(reload_id)s | %(msg)s",
            datefmt="%d-%m-%Y, %H:%M:%S",
            log_colors={
                "DEBUG": "blue",
                "INFO": "",
                "WARNING": "yellow",
                "ERROR": "red",
                "CRITICAL": "bold_red",
            },
        )

        console_handler = StreamHandler()
        console_handler.setFormatter(local_formatter)
        console_handler.addFilter(_ReloadIdFilter(self.reload_id_var))
        self.addHandler(console_handler)

        ProxyConfigLogger._initialized = True

    def set_reload_id(self, reload_id: str) -> None:
        self.reload_id_var.set(reload_id)

    def get_reload_id(self) -> str:
        return self.reload_id_var.get()

    def local_time(self, *args):
        return datetime.now(tz=self._tz).timetuple()


logger = ProxyConfigLogger()
