"""Allow ``python -m dcdn_firewall_sync``."""

import sys

from dcdn_firewall_sync.cli import main

sys.exit(main())
