"""
Custody Vault Entry Point

Starts the FastAPI server with settings taken from VAULT_* environment
variables (or a .env file).
"""

import sys

from .api import run_server
from .config import get_config


def main() -> int:
    config = get_config()
    print(f"Starting Custody Vault on {config.api_host}:{config.api_port}")
    print(f"Policy: cap={config.global_cap} ceiling={config.withdrawal_ceiling}")

    try:
        run_server(config)
    except KeyboardInterrupt:
        print("\nShutting down Custody Vault...")
    return 0


if __name__ == "__main__":
    sys.exit(main())
