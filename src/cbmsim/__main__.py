"""Run the command line interface: ``python -m cbmsim``."""

import sys

from cbmsim.cli import main

sys.exit(main())
