"""Entry point for python -m bootstrap_token_manager."""
import sys

from bootstrap_token_manager.main import main

if __name__ == "__main__":
    sys.exit(main())
