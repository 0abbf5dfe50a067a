"""Logging utilities for shapegraph.

Graph summaries span several lines; this formatter keeps them readable in a
log file and setup_logging attaches it to the package logger.
"""

import logging

__all__ = ["setup_logging", "MultilineFormatter"]


class MultilineFormatter(logging.Formatter):
    """Formatter that keeps continuation lines of a message unindented.

    Node summaries and Graph tables span several lines; only the first line
    carries the metadata column.

    Attributes:
        msg_width: Width the first line is padded to before the metadata.
        show_metadata: Whether to append timestamp/level/name metadata.
    """

    def __init__(self, msg_width: int, show_metadata: bool) -> None:
        super().__init__(datefmt="%Y-%m-%d %H:%M:%S")
        self.msg_width = msg_width
        self.show_metadata = show_metadata

    def format(self, record: logging.LogRecord) -> str:
        """Pad the first line and append metadata to it when enabled.

        Args:
            record: Record to render.

        Returns:
            The rendered message.
        """
        first, _, rest = record.getMessage().partition("\n")
        if self.show_metadata:
            first = f"{first:<{self.msg_width}}{self.formatTime(record)} - {record.levelname} - {record.name}"
        return f"{first}\n{rest}" if rest else first


def setup_logging(
    log_file: str | None = None, level: int = logging.DEBUG, msg_width: int = 120, show_metadata: bool = False
) -> logging.Handler:
    """Route shapegraph logs through a MultilineFormatter.

    Args:
        log_file: Path to the log file; logs go to stderr when None.
        level: Level set on the ``shapegraph`` logger.
        msg_width: Width for message alignment.
        show_metadata: Whether to append timestamp/level/name metadata to log lines.

    Returns:
        The installed handler, so callers can remove it again.
    """
    handler = logging.FileHandler(log_file, mode="w") if log_file else logging.StreamHandler()
    handler.setFormatter(MultilineFormatter(msg_width=msg_width, show_metadata=show_metadata))
    logger = logging.getLogger("shapegraph")
    logger.addHandler(handler)
    logger.setLevel(level)
    return handler
