import logging
import os
import traceback
from typing import Optional, Union

DEFAULT_FORMAT = '%(asctime)s - %(levelname)s - %(name)s - %(message)s'


def _coerce_level(level: Union[int, str, None]) -> int:
	if level is None:
		level = os.environ.get("RMAMI_LOG_LEVEL", logging.INFO)
	if isinstance(level, str):
		value = logging.getLevelName(level.strip().upper())
		return value if isinstance(value, int) else logging.INFO
	return level


def setup_logging(level: Union[int, str, None] = None, fmt: Optional[str] = None) -> None:
	"""Configure root logging once. Later calls only adjust the level.
	If fmt is not provided, a sensible default is used.
	"""
	root = logging.getLogger()
	if root.handlers:
		if level is not None:
			root.setLevel(_coerce_level(level))
		return
	logging.basicConfig(level=_coerce_level(level), format=fmt or DEFAULT_FORMAT)

	# botocore is chatty at DEBUG and dumps request signing details
	logging.getLogger("botocore").setLevel(logging.WARNING)


def get_logger(name: Optional[str] = None) -> logging.Logger:
	"""Return a module/logger by name, after ensuring logging is configured."""
	setup_logging()
	return logging.getLogger(name) if name else logging.getLogger("rmami")


def log_exception(logger: logging.Logger, message: str = "An error occurred", exc_info: Exception = None) -> None:
	"""Log an error with its type, message and the current traceback.

	Args:
		logger: Logger instance to use
		message: Custom error message to log before the traceback
		exc_info: Exception instance (if None, uses current exception context)
	"""
	logger.error(message)
	if exc_info is not None:
		logger.error(f"Exception type: {type(exc_info).__name__}")
		logger.error(f"Exception message: {str(exc_info)}")
	logger.debug("Full traceback:")
	logger.debug(traceback.format_exc())
