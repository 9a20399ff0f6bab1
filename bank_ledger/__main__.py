"""Start the API server: python -m bank_ledger"""

from .config import get_config
from .logging_config import setup_logging
from .api import run_server


if __name__ == "__main__":
    config = get_config()
    setup_logging(config.log_level, config.log_format, config.log_file)
    run_server()
