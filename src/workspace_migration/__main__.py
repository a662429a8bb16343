import sys

from workspace_migration.cli import main

sys.exit(main())
