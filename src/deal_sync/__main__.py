"""Allow `python -m deal_sync`."""

import sys

from .cli import main

sys.exit(main())
