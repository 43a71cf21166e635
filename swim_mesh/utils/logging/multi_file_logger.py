"""Component-based log file separation.

Each component gets its own rotating log file, with an additional error log
that captures all ERROR level messages across components.

Log Files:
- orchestrator.log: routing, plan coordination, composition
- a2a.log: agent-to-agent transport
- events.log: trigger matching and report publication
- adherence.log: correlation engine
- agents.log: hosted capability agents
- system.log: configuration and everything else
- errors.log: all ERROR level messages (cross-component)
"""

import json
import logging
import logging.handlers
import os
from pathlib import Path
from threading import Lock
from typing import Dict, Optional

from .logger import StructuredLogger


class MultiFileLogger(StructuredLogger):
    """Logger that routes messages to different files based on component."""

    COMPONENT_FILES = {
        'orchestrator': 'orchestrator.log',
        'a2a': 'a2a.log',
        'events': 'events.log',
        'adherence': 'adherence.log',
        'agents': 'agents.log',
        'system': 'system.log',
        'config': 'system.log',
    }

    def __init__(self, log_dir: str = "logs", level: int = logging.INFO,
                 max_bytes: int = 10 * 1024 * 1024, backup_count: int = 5):
        super().__init__("swim_mesh", level)
        self.log_dir = Path(log_dir)
        self.log_dir.mkdir(parents=True, exist_ok=True)
        self.level = level
        self.lock = Lock()
        self.handlers: Dict[str, logging.Handler] = {}

        # Routing is done here, not through the stdlib hierarchy
        self.logger.handlers.clear()
        self.logger.propagate = False

        by_file: Dict[str, logging.Handler] = {}
        for component, filename in self.COMPONENT_FILES.items():
            if filename not in by_file:
                by_file[filename] = self._make_handler(filename, level, max_bytes, backup_count)
            self.handlers[component] = by_file[filename]

        self.handlers['_errors'] = self._make_handler(
            'errors.log', logging.ERROR, max_bytes, backup_count * 2
        )

    def _make_handler(self, filename: str, level: int, max_bytes: int,
                      backup_count: int) -> logging.Handler:
        handler = logging.handlers.RotatingFileHandler(
            self.log_dir / filename,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding='utf-8',
            delay=True
        )
        handler.setFormatter(logging.Formatter('%(message)s'))
        handler.setLevel(level)
        return handler

    def _get_handler(self, component: Optional[str]) -> logging.Handler:
        if component and component in self.handlers:
            return self.handlers[component]
        return self.handlers['system']

    def _log(self, level: int, message: str, **kwargs):
        if level < self.level:
            return
        entry = self.build_entry(level, message, **kwargs)
        record = self.logger.makeRecord(
            self.logger.name, level, "", 0, json.dumps(entry, default=str), (), None
        )

        with self.lock:
            handler = self._get_handler(kwargs.get('component'))
            if level >= handler.level:
                handler.emit(record)
            if level >= logging.ERROR:
                self.handlers['_errors'].emit(record)

    def close(self):
        with self.lock:
            for handler in set(self.handlers.values()):
                handler.close()


_multi_logger: Optional[MultiFileLogger] = None
_multi_logger_lock = Lock()


def get_multi_file_logger() -> MultiFileLogger:
    """Get the process-wide multi-file logger (singleton).

    Directory and level come from ``LOGS_DIR`` and ``LOG_LEVEL``.
    """
    global _multi_logger
    if _multi_logger is None:
        with _multi_logger_lock:
            if _multi_logger is None:
                level_name = os.environ.get("LOG_LEVEL", "INFO").upper()
                level = logging.getLevelName(level_name)
                if not isinstance(level, int):
                    level = logging.INFO
                _multi_logger = MultiFileLogger(
                    log_dir=os.environ.get("LOGS_DIR", "logs"),
                    level=level
                )
    return _multi_logger
