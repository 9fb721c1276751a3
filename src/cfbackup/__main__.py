import sys

from cfbackup.cli import main

sys.exit(main())
