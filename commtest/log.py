import logging
import sys

SUCCESS = 25
logging.addLevelName(SUCCESS, "SUCCESS")

RESET = "\x1b[0m"
COLORS = {
    logging.DEBUG: "\x1b[36m",     # cyan
    logging.INFO: "",
    SUCCESS: "\x1b[32m",           # green
    logging.WARNING: "\x1b[33m",   # yellow
    logging.ERROR: "\x1b[31m",     # red
    logging.CRITICAL: "\x1b[31m",
}
TIMESTAMP_COLOR = "\x1b[34m"

FILE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class ColorFormatter(logging.Formatter):
    """Console formatter: blue time stamp, message colored by level"""

    def __init__(self, color: bool = True):
        super().__init__(datefmt="%H:%M:%S")
        self.color = color

    def format(self, record: logging.LogRecord) -> str:
        timestamp = self.formatTime(record, self.datefmt)
        message = record.getMessage()
        if record.levelno >= SUCCESS:
            message = f"[{record.levelname}] {message}"
        if record.exc_info:
            message = f"{message}\n{self.formatException(record.exc_info)}"
        if not self.color:
            return f"[{timestamp}] {message}"
        color = COLORS.get(record.levelno, "")
        return f"{TIMESTAMP_COLOR}[{timestamp}]{RESET} {color}{message}{RESET}"


def success(logger: logging.Logger, message: str, *args):
    logger.log(SUCCESS, message, *args)


def setup_logging(settings) -> logging.Logger:
    """Configure the root logger once per run; later calls replace the handlers"""
    console = logging.StreamHandler(sys.stdout)
    console.setFormatter(ColorFormatter(color=settings.COLOR))
    handlers = [console]

    if settings.LOG_FILE:
        file_handler = logging.FileHandler(settings.LOG_FILE, mode="a", encoding="utf-8")
        file_handler.setFormatter(logging.Formatter(FILE_FORMAT))
        handlers.append(file_handler)

    logging.basicConfig(
        level=getattr(logging, settings.get_log_level(), logging.INFO),
        handlers=handlers,
        force=True,
    )
    # Keep library chatter out of the test transcript
    for noisy in ("websockets", "asyncio", "uvicorn.access"):
        logging.getLogger(noisy).setLevel(logging.WARNING)
    return logging.getLogger("commtest")
