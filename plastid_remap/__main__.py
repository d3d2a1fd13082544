import sys

from plastid_remap.cli import main

sys.exit(main())
