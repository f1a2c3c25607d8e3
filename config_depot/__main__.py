import sys

from config_depot.cli import main

sys.exit(main())
