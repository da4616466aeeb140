"""Allow ``python -m qrng_client``."""

import sys

from qrng_client.cli import main

sys.exit(main())
