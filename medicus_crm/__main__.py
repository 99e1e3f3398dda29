import sys

from medicus_crm.cli import main

sys.exit(main())
