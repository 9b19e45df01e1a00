#!/usr/bin/env python3

from logging import getLogger, StreamHandler, Formatter, DEBUG, INFO
from logging.handlers import SysLogHandler
from argparse import Namespace
from typing import Type, Optional, Any
from types import TracebackType
import os
import sys

logger = getLogger("poolhcpd")
sfmt = "%(name)s[%(process)d]: %(levelname)s - %(message)s"
cfmt = "%(asctime)s - %(levelname)s - [%(threadName)s] - %(message)s"
SYSLOG_SOCKET = "/dev/log"


def set_log_config(logconf: Namespace) -> None:
    logger.setLevel(DEBUG if logconf.verbose else INFO)
    if logconf.foreground:
        chdl = StreamHandler()
        chdl.setFormatter(Formatter(cfmt))
        logger.addHandler(chdl)

    if os.path.exists(SYSLOG_SOCKET):
        shdl = SysLogHandler(address=SYSLOG_SOCKET)
        shdl.setFormatter(Formatter(sfmt))
        logger.addHandler(shdl)

    def handle_exception(
        type_: Type[BaseException],
        value: BaseException,
        traceback: Optional[TracebackType],
    ) -> Any:
        logger.error("Uncaught exception", exc_info=(type_, value, traceback))
        sys.exit(-1)

    sys.excepthook = handle_exception
