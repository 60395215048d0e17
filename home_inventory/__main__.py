import sys

from home_inventory.cli import main

sys.exit(main())
