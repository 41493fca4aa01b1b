# fleet_backup_sync/__main__.py

import sys

from fleet_backup_sync.cli import main

sys.exit(main())
