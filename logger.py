import os
import logging
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler
from rich.traceback import install

# ignore errors from these libs
import tomlkit, voluptuous, websockets

console = Console()

_print = print  # save python's print.

print = console.print  # raw print

_handler: Optional[RichHandler] = None


def setup_logging():
    global _handler
    FORMAT = "%(message)s"
    _handler = RichHandler(
        level=os.environ.get("LOGLEVEL", "INFO"),
        console=console,
        rich_tracebacks=True,
        tracebacks_suppress=[tomlkit, voluptuous, websockets]
    )

    logging.basicConfig(
        level="NOTSET", format=FORMAT, datefmt="[%X]", handlers=[_handler]
    )
    logging.getLogger("websockets").setLevel(os.environ.get("WEBSOCKETS_LOGLEVEL", "WARNING"))

    install(
        console = console
    )


def apply_logging_config(logging_config: dict):
    """
    Applies the [logging] section once the configuration is loaded.
    LOGLEVEL and WEBSOCKETS_LOGLEVEL from the environment still take precedence.
    """
    level = os.environ.get("LOGLEVEL", logging_config["level"])
    if _handler is not None:
        _handler.setLevel(level)

    # the websockets library logs every frame and ping at debug
    websockets_level = os.environ.get("WEBSOCKETS_LOGLEVEL", logging_config["websockets_level"])
    logging.getLogger("websockets").setLevel(websockets_level)
    logging.debug(f"Log level {level}, websockets log level {websockets_level}")
