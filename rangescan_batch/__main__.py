"""``python -m rangescan_batch`` runs the rangescan CLI."""

import sys

from rangescan_batch.cli import main

sys.exit(main())
