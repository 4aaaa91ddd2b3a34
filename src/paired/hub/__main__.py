"""Entry point used by the supervisor: ``python -m paired.hub``."""

import sys

from paired.hub.server import main

sys.exit(main())
