import logging
from nfe_agil.settings import settings

def get_logger(name: str) -> logging.Logger:
    logger = logging.getLogger(name)
    if settings.APP_DEBUG and not logger.handlers:
        h = logging.StreamHandler()
        fmt = logging.Formatter('[%(name)s] %(asctime)s %(levelname)s %(message)s')
        h.setFormatter(fmt)
        logger.addHandler(h)
        logger.setLevel(logging.DEBUG)
    return logger
