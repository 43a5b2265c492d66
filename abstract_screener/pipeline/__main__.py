"""Entry point for ``python -m abstract_screener.pipeline``."""

import sys

from .cli import main

if __name__ == "__main__":
    sys.exit(main())
