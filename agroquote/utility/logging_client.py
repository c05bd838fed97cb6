import contextvars
import json
import logging
import os
import time
import traceback
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

from rich.console import Console
from rich.logging import RichHandler

LOGS_DIR = Path(os.getenv("LOGS_DIR", "logs"))
LOGS_DIR.mkdir(exist_ok=True)

app_logger = logging.getLogger("agroquote")
app_logger.setLevel(logging.DEBUG)
app_logger.handlers.clear()

request_id_var: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "request_id", default=None
)


def generate_request_id() -> str:
    return str(uuid.uuid4())[:8]


def get_request_id() -> Optional[str]:
    return request_id_var.get()


def set_request_id(request_id: Optional[str] = None) -> str:
    rid = request_id or generate_request_id()
    request_id_var.set(rid)
    return rid


class AppLogger:
    _instance = None
    _console = Console()

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._setup_handlers()
        return cls._instance

    def _setup_handlers(self):
        rich_handler = RichHandler(
            console=self._console,
            show_time=True,
            show_path=False,
            markup=False,
            rich_tracebacks=True,
        )
        rich_handler.setFormatter(logging.Formatter("%(message)s"))
        app_logger.addHandler(rich_handler)
        self._add_timed_file_handler()

    def _add_timed_file_handler(self):
        today = datetime.now().strftime("%Y-%m-%d")
        file_path = LOGS_DIR / f"{today}.log"
        file_handler = logging.FileHandler(file_path, encoding="utf-8")
        file_formatter = logging.Formatter(
            "[%(asctime)s] %(levelname)s | %(name)s | %(message)s", datefmt="%H:%M:%S"
        )
        file_handler.setFormatter(file_formatter)
        app_logger.addHandler(file_handler)

    def _renew_file_handler(self):
        for handler in app_logger.handlers[:]:
            if isinstance(handler, logging.FileHandler):
                app_logger.removeHandler(handler)
                handler.close()
        self._add_timed_file_handler()

    def _ensure_daily_log(self):
        today = datetime.now().strftime("%Y-%m-%d")
        current_file = LOGS_DIR / f"{today}.log"
        if not any(
            isinstance(h, logging.FileHandler) and Path(h.baseFilename) == current_file.resolve()
            for h in app_logger.handlers
        ):
            self._renew_file_handler()

    def set_level(self, level: str) -> None:
        app_logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    def info(self, message: str, component: str = "app"):
        self._ensure_daily_log()
        app_logger.info(f"[{component.upper()}] {message}")

    def error(self, message: str, component: str = "app", exc_info=False):
        self._ensure_daily_log()
        app_logger.error(f"[{component.upper()}] {message}", exc_info=exc_info)

    def debug(self, message: str, component: str = "app"):
        self._ensure_daily_log()
        app_logger.debug(f"[{component.upper()}] {message}")

    def warning(self, message: str, component: str = "app"):
        self._ensure_daily_log()
        app_logger.warning(f"[{component.upper()}] {message}")

    def structured(self, level: str, event: str, component: str = "app", **extra: Any):
        self._ensure_daily_log()
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": level.upper(),
            "event": event,
            "component": component,
            "request_id": get_request_id(),
            **extra,
        }
        json_str = json.dumps(log_entry, ensure_ascii=False, default=str)
        log_func = getattr(app_logger, level.lower(), app_logger.info)
        log_func(f"[STRUCTURED] {json_str}")

    def log_exception(
        self,
        exc: BaseException,
        component: str = "app",
        context: Optional[Dict[str, Any]] = None,
    ):
        self._ensure_daily_log()
        exc_info = {
            "exception_type": type(exc).__name__,
            "exception_message": str(exc),
            "traceback": "".join(traceback.format_exception(type(exc), exc, exc.__traceback__)),
        }
        if context:
            exc_info["context"] = context
        self.structured("error", "exception", component=component, **exc_info)

    def timed(self, operation: str, component: str = "app"):
        return TimedOperation(operation, component, self)


class TimedOperation:
    def __init__(self, operation: str, component: str, logger_instance: "AppLogger"):
        self.operation = operation
        self.component = component
        self.logger = logger_instance
        self.start_time: float = 0
        self.extra: Dict[str, Any] = {}

    def add_context(self, **kwargs: Any):
        self.extra.update(kwargs)
        return self

    def __enter__(self):
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        duration_ms = (time.perf_counter() - self.start_time) * 1000
        if exc_type is not None:
            self.logger.structured(
                "error",
                f"{self.operation}_failed",
                component=self.component,
                duration_ms=round(duration_ms, 2),
                error=str(exc_val),
                **self.extra,
            )
        else:
            self.logger.structured(
                "info",
                f"{self.operation}_completed",
                component=self.component,
                duration_ms=round(duration_ms, 2),
                **self.extra,
            )
        return False


logger = AppLogger()
