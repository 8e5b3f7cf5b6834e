import logging
import sys
from dishka import Provider, provide, Scope

LOGGER_NAME = "contract_explainer"


def configure_logging(level: int = logging.INFO) -> logging.Logger:
    """
    Configure root logging once and return the application logger.

    Parameters
    ----------
    level : int
        Root logging level

    Returns
    -------
    logging.Logger
        Application logger
    """
    if not logging.getLogger().handlers:
        logging.basicConfig(
            level=level,
            format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
            handlers=[
                logging.StreamHandler(sys.stdout)
            ]
        )
    return logging.getLogger(LOGGER_NAME)


class LoggerProvider(Provider):
    """
    Provider for the application logger.

    Logs go to stdout at INFO level.
    """
    component = "logger"

    @provide(scope=Scope.APP)
    def get_logger(self) -> logging.Logger:
        """
        Provide configured logger instance.

        Returns
        -------
        logging.Logger
            Configured logger that writes to console
        """
        return configure_logging()
