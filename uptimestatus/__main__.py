"""Allow running as ``python -m uptimestatus``."""

from . import main

main()
