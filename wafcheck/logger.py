"""
WAF Checker - Console Logging
Tagged console output ("[Detector] ...") rendered through rich.
"""

import os

from rich.console import Console
from rich.markup import escape


console = Console(stderr=True)

_verbose = os.environ.get("WAFCHECK_VERBOSE", "").strip().lower() in ("1", "true", "yes")


def set_verbose(enabled: bool = True):
    global _verbose
    _verbose = enabled


def is_verbose() -> bool:
    return _verbose


def _emit(style: str, tag: str, msg: str):
    console.print(f"[{style}]\\[{escape(tag)}][/{style}] {escape(str(msg))}")


def log_info(tag: str, msg: str):
    _emit("blue", tag, msg)


def log_success(tag: str, msg: str):
    _emit("green", tag, msg)


def log_warning(tag: str, msg: str):
    _emit("yellow", tag, msg)


def log_error(tag: str, msg: str):
    _emit("bold red", tag, msg)


def log_debug(tag: str, msg: str):
    if _verbose:
        _emit("dim", tag, msg)
