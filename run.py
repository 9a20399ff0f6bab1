#!/usr/bin/env python3
"""
Bank Ledger Entry Point

Starts the FastAPI server on the configured host and port (default 3000).
"""

import sys
from pathlib import Path

# Add the project root to Python path
project_root = Path(__file__).parent
sys.path.insert(0, str(project_root))

from bank_ledger.api import run_server
from bank_ledger.config import get_config
from bank_ledger.logging_config import setup_logging


if __name__ == "__main__":
    config = get_config()
    setup_logging(config.log_level, config.log_format, config.log_file)

    print("Starting Bank Ledger...")
    print(f"Storage: {config.database_url}")
    print(f"API available at: http://localhost:{config.api_port}")
    print(f"Documentation at: http://localhost:{config.api_port}/docs")
    print()

    try:
        run_server()
    except KeyboardInterrupt:
        print("\nShutting down Bank Ledger...")
    except Exception as e:
        print(f"Error starting server: {e}")
        sys.exit(1)
