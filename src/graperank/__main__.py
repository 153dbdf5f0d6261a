"""Entry point for ``python -m graperank``."""

import sys

from graperank.cli import main

sys.exit(main())
