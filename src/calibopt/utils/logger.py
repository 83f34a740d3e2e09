#########################################################################################
##
##                              CENTRAL LOGGER MANAGEMENT
##                                 (utils/logger.py)
##
##          Hands out named loggers below the package root logger and owns the
##          single stream handler, so that log level and output can be
##          controlled in one place for the whole library.
##
#########################################################################################

# IMPORTS ===============================================================================

import logging
import threading

from .._constants import LOG_ROOT_NAME, LOG_FORMAT


# CLASS =================================================================================

class LoggerManager:
    """Process-wide singleton that configures the ``calibopt`` logger hierarchy.

    All library modules obtain their logger through :meth:`get_logger`, which
    returns children of the root package logger. The manager installs one
    stream handler on that root logger (lazily, on first use) and leaves
    propagation to the application's handlers untouched.

    Example
    -------
    .. code-block:: python

        from calibopt import LoggerManager

        LoggerManager().set_level(logging.DEBUG)   # per-iteration solver output
        LoggerManager().disable()                  # silence the library
    """

    _instance = None
    _lock = threading.Lock()

    def __new__(cls):
        with cls._lock:
            if cls._instance is None:
                instance = super().__new__(cls)
                instance._initialized = False
                cls._instance = instance
        return cls._instance


    def __init__(self):
        if self._initialized:
            return

        self.root = logging.getLogger(LOG_ROOT_NAME)
        self.root.setLevel(logging.WARNING)

        self.handler = logging.StreamHandler()
        self.handler.setFormatter(logging.Formatter(LOG_FORMAT))
        self.root.addHandler(self.handler)

        self._initialized = True


    def get_logger(self, name):
        """Return the logger ``calibopt.<name>``.

        Parameters
        ----------
        name : str
            dotted name below the package root, e.g. ``"opt.levenberg_marquardt"``

        Returns
        -------
        logging.Logger
        """
        if not name or name == LOG_ROOT_NAME:
            return self.root
        if name.startswith(LOG_ROOT_NAME + "."):
            name = name[len(LOG_ROOT_NAME) + 1:]
        return self.root.getChild(name)


    def set_level(self, level):
        """Set the level of the package root logger."""
        self.root.setLevel(level)


    def enable(self, level=logging.INFO):
        """Re-enable library output at the given level."""
        self.root.setLevel(level)


    def disable(self):
        """Suppress all library output."""
        self.root.setLevel(logging.CRITICAL + 1)
