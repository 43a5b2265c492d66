"""Entry point for ``python -m abstract_screener``."""

import sys

from abstract_screener.pipeline.cli import main

if __name__ == "__main__":
    sys.exit(main())
