"""
Logging for the build.

Two channels:
- diagnostic logging via the stdlib `logging` module, configured from the LOG_LEVEL env var.
- a `Console` that prints the colorized, user-facing build lines (cache hits, fetch statuses,
  failures, created pages).
"""

import logging
import os
import sys
from typing import TextIO

from tqdm import tqdm

LOG_FORMAT: str = '[%(asctime)s] %(levelname)s [%(module)s-%(funcName)s()::%(lineno)d] %(message)s'
LOG_DATEFMT: str = '%d/%b/%Y %H:%M:%S'

ANSI_RESET: str = '\u001b[0m'
ANSI_STYLES: dict[str, str] = {
    'bright': '\u001b[1m',
    'dim': '\u001b[2m',
    'underscore': '\u001b[4m',
}
ANSI_COLORS: dict[str, str] = {
    'black': '\u001b[30m',
    'red': '\u001b[31m',
    'green': '\u001b[32m',
    'yellow': '\u001b[33m',
    'blue': '\u001b[34m',
    'magenta': '\u001b[35m',
    'cyan': '\u001b[36m',
    'white': '\u001b[37m',
}


def setup_logging() -> int:
    """
    Configures root logging from the LOG_LEVEL env var and quiets httpx.
    Returns the level in effect.
    Called by: build.main()
    """
    log_level_name: str = os.getenv('LOG_LEVEL', 'INFO').upper()
    log_level: int = getattr(
        logging, log_level_name, logging.INFO
    )  # maps the string name to the corresponding logging level constant; defaults to INFO
    logging.basicConfig(level=log_level, format=LOG_FORMAT, datefmt=LOG_DATEFMT)
    ## prevent httpx from logging
    if log_level <= logging.INFO:
        for noisy in ('httpx', 'httpcore'):
            lg = logging.getLogger(noisy)
            lg.setLevel(logging.WARNING)
            lg.propagate = False  # don't bubble up to root
    return log_level


class Console:
    """
    Prints user-facing build lines.
    - Wraps each line in ANSI color/style codes when the stream is a terminal.
    - Honors NO_COLOR, and an explicit `color=False` for tests and piped output.
    - Writes through `tqdm.write()` so lines land above an active progress bar.
    - Keeps a plain-text copy of everything written in `history` for inspection.
    """

    def __init__(self, stream: TextIO | None = None, color: bool | None = None) -> None:
        self.stream: TextIO = stream if stream is not None else sys.stdout
        if color is None:
            color = bool(getattr(self.stream, 'isatty', lambda: False)()) and 'NO_COLOR' not in os.environ
        self.color: bool = color
        self.history: list[str] = []

    def style(self, text: str, color: str = 'blue', *, dim: bool = False, bright: bool = False) -> str:
        if not self.color:
            return text
        parts: list[str] = []
        if bright:
            parts.append(ANSI_STYLES['bright'])
        if dim:
            parts.append(ANSI_STYLES['dim'])
        parts.append(ANSI_COLORS.get(color, ''))
        parts.append(text)
        parts.append(ANSI_RESET)
        return ''.join(parts)

    def line(self, text: str, color: str = 'blue', *, dim: bool = False, bright: bool = False) -> None:
        self.history.append(text)
        tqdm.write(self.style(text, color, dim=dim, bright=bright), file=self.stream)

    def response(self, label: str, status: object, ok: bool = True) -> None:
        """
        Prints a fetch/cache outcome like `✓ <id> ➜ 200` or `✗ <id> ➜ ERR`.
        """
        if ok:
            self.line(response_text(label, status, ok), 'yellow')
        else:
            self.line(response_text(label, status, ok), 'red')

    def warn(self, text: str) -> None:
        self.line(text, 'magenta', dim=True)

    def error(self, text: str) -> None:
        self.line(text, 'red')


def response_text(label: str, status: object, ok: bool = True) -> str:
    mark: str = '✓' if ok else '✗'
    return f'{mark} {label} ➜ {status}'
