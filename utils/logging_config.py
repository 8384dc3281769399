# utils/logging_config.py

import logging
import logging.handlers
import sys
from pathlib import Path
import json
import time
from contextlib import contextmanager
from datetime import datetime
from typing import Dict, List, Optional

import numpy as np


def setup_logging(level: str = "INFO", log_dir: Optional[str] = "logs"):
    """Setup application logging (console, plus a log file when log_dir is set)"""
    handlers = [logging.StreamHandler(sys.stderr)]
    if log_dir:
        Path(log_dir).mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(Path(log_dir) / "app.log"))

    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=handlers,
        force=True
    )


class CustomLogger:
    """
    Enhanced logging with structured output
    """

    def __init__(self, name: str, log_dir: str = "logs", console: bool = True):
        self.name = name
        self.log_dir = Path(log_dir)
        self.log_dir.mkdir(parents=True, exist_ok=True)
        self.console = console
        self.logger = self._setup_logger()

    def _setup_logger(self) -> logging.Logger:
        """Setup logger with multiple handlers"""
        logger = logging.getLogger(self.name)
        logger.setLevel(logging.DEBUG)
        logger.propagate = False

        # Same name means same logger; don't stack handlers
        for handler in list(logger.handlers):
            logger.removeHandler(handler)
            handler.close()

        if self.console:
            console_handler = logging.StreamHandler()
            console_handler.setLevel(logging.INFO)
            console_handler.setFormatter(logging.Formatter(
                '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
            ))
            logger.addHandler(console_handler)

        # File handler (rotating)
        file_handler = logging.handlers.RotatingFileHandler(
            self.log_dir / f"{self.name}.log",
            maxBytes=10*1024*1024,  # 10 MB
            backupCount=5
        )
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(funcName)s:%(lineno)d - %(message)s'
        ))

        # JSON handler for structured logs
        json_handler = logging.handlers.RotatingFileHandler(
            self.log_dir / f"{self.name}_structured.json",
            maxBytes=10*1024*1024,
            backupCount=5
        )
        json_handler.setLevel(logging.INFO)
        json_handler.setFormatter(JSONFormatter())

        logger.addHandler(file_handler)
        logger.addHandler(json_handler)

        return logger

    def log_operation(self, operation: str, **fields):
        """
        Log one retrieval operation; the JSON handler keeps the fields
        as a nested object instead of a re-encoded string
        """
        self.logger.info(
            f"{operation}: " + ", ".join(f"{k}={v}" for k, v in fields.items()
                                         if not isinstance(v, (list, dict))),
            extra={'operation': operation, 'fields': fields}
        )

    def close(self):
        for handler in list(self.logger.handlers):
            self.logger.removeHandler(handler)
            handler.close()


class JSONFormatter(logging.Formatter):
    """One JSON object per line, with operation fields inlined"""

    def format(self, record):
        entry = {
            'time': datetime.fromtimestamp(record.created).isoformat(timespec='milliseconds'),
            'level': record.levelname,
            'logger': record.name,
            'where': f"{record.module}.{record.funcName}:{record.lineno}",
        }

        operation = getattr(record, 'operation', None)
        if operation is not None:
            entry['operation'] = operation
            entry['fields'] = getattr(record, 'fields', {})
        else:
            entry['message'] = record.getMessage()

        if record.exc_info:
            entry['exception'] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str)


class PerformanceLogger:
    """
    Per-stage timings (load, rank, evaluate) of retrieval requests
    """

    def __init__(self):
        self.metrics = []

    @contextmanager
    def stage(self, name: str, **metadata):
        """Time the body of a with-block as one run of a stage"""
        start = time.perf_counter()
        try:
            yield
        finally:
            self.metrics.append({
                'stage': name,
                'seconds': time.perf_counter() - start,
                **metadata
            })

    def stages(self) -> List[str]:
        """Stage names in the order they first ran"""
        return list(dict.fromkeys(m['stage'] for m in self.metrics))

    def summary(self) -> Dict[str, Dict[str, float]]:
        """count/mean/median/max/total seconds for every stage"""
        summary = {}
        for name in self.stages():
            seconds = np.array([m['seconds'] for m in self.metrics if m['stage'] == name])
            summary[name] = {
                'count': int(seconds.size),
                'mean': float(seconds.mean()),
                'median': float(np.median(seconds)),
                'max': float(seconds.max()),
                'total': float(seconds.sum())
            }
        return summary

    def format_summary(self) -> str:
        lines = [f"{'stage':<10} {'runs':>6} {'mean ms':>10} {'max ms':>10} {'total ms':>10}"]
        for name, s in self.summary().items():
            lines.append(f"{name:<10} {s['count']:>6} {s['mean'] * 1e3:>10.2f} "
                         f"{s['max'] * 1e3:>10.2f} {s['total'] * 1e3:>10.2f}")
        return "\n".join(lines)

    def save_metrics(self, output_path: str):
        """Save raw timings and the per-stage summary to a JSON file"""
        with open(output_path, 'w') as f:
            json.dump({'runs': self.metrics, 'summary': self.summary()}, f, indent=2, default=str)
