import logging
import os
import sys

BLACK, RED, GREEN, YELLOW, BLUE, MAGENTA, CYAN, WHITE = range(8)

# escape sequences for colored terminal output, foreground is 30 + color
RESET_SEQ = "\033[0m"
COLOR_SEQ = "\033[1;%dm"
BOLD_SEQ = "\033[1m"

LEVEL_COLORS = {
    'WARNING': YELLOW,
    'INFO': GREEN,
    'DEBUG': BLUE,
    'CRITICAL': MAGENTA,
    'ERROR': RED
}

FORMAT = (
    "[%(asctime)s %(levelname)-18s "
    "$BOLD%(filename)s{%(lineno)d}$RESET:%(funcName)s()] "
    "%(message)s"
)


def formatter_message(message: str, use_color: bool = True) -> str:
    """
    Expand the $BOLD / $RESET markers of a format string.
    """
    if use_color:
        return message.replace("$RESET", RESET_SEQ).replace("$BOLD", BOLD_SEQ)
    return message.replace("$RESET", "").replace("$BOLD", "")


class ColoredFormatter(logging.Formatter):
    """
    Formatter that paints the level name when writing to a terminal.
    """
    def __init__(self, msg: str, use_color: bool = True):
        super().__init__(formatter_message(msg, use_color))
        self.use_color = use_color

    def format(self, record: logging.LogRecord) -> str:
        if not self.use_color or record.levelname not in LEVEL_COLORS:
            return super().format(record)

        # work on a copy so that other handlers see the plain level name
        record = logging.makeLogRecord(record.__dict__)
        color = COLOR_SEQ % (30 + LEVEL_COLORS[record.levelname])
        record.levelname = f"{color}{record.levelname}{RESET_SEQ}"
        return super().format(record)


def set_verbosity(debug: bool = False) -> None:
    """
    Switch the stackman logger between INFO and DEBUG.

    Args:
        debug: log http requests/responses and poller ticks when True
    """
    level = logging.DEBUG if debug else logging.INFO
    logger.setLevel(level)
    for handler in logger.handlers:
        handler.setLevel(level)


logger = logging.getLogger('stackman')
logger.setLevel(os.environ.get('STACKMAN_LOG_LEVEL', 'INFO').upper())

if not logger.handlers:
    # stdout is reserved for rendered summaries (json/yaml)
    _handler = logging.StreamHandler(sys.stderr)
    _handler.setLevel(logger.level)
    _handler.setFormatter(
        ColoredFormatter(FORMAT, use_color=sys.stderr.isatty()))
    logger.addHandler(_handler)

    logger.propagate = False
