"""Entry point for running comicstruct as a module.

Usage:
    python -m comicstruct analyze page.png
"""

import sys

from .cli import main

if __name__ == "__main__":
    sys.exit(main())
