"""Logging module for sitenav."""

import json
from collections import Counter
from datetime import datetime
from typing import Optional, Callable


class Logger:
    """Logs structured navigation records to stdout and an optional file.

    Every record is also tallied by message, so a run can report how many
    fixes were dropped or how often the walker left the route without
    re-reading the log.
    """

    def __init__(self, log_path: Optional[str] = None, callback: Optional[Callable] = None,
                 echo: bool = True):
        self.log_path = log_path
        self.callback = callback
        self.echo = echo
        self.counts: Counter = Counter()
        self.file = None
        if log_path:
            self.file = open(log_path, "a")
            self._write_header()

    def _write_header(self):
        if self.file:
            self.file.write(f"\n{'='*60}\n")
            self.file.write(f"sitenav log - {datetime.now().isoformat()}\n")
            self.file.write(f"{'='*60}\n\n")
            self.file.flush()

    def log(self, message: str, data: Optional[dict] = None):
        """Log a message with optional structured data"""
        self.counts[message] += 1
        timestamp = datetime.now().isoformat()
        line = f"[{timestamp}] {message}"
        if data:
            # Enums and points in guidance records are written by their str()
            line += f" | {json.dumps(data, default=str)}"
        if self.echo:
            print(line)
        if self.file:
            self.file.write(line + "\n")
            self.file.flush()
        if self.callback:
            self.callback(message, data)

    def tally(self, **messages: str) -> dict:
        """Counts for the given messages, keyed by the argument names"""
        return {key: self.counts[message] for key, message in messages.items()}

    def close(self):
        if self.file:
            self.file.close()
            self.file = None
