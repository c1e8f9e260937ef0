from stackman import metadata
from stackman.loggers.logger import logger as log
