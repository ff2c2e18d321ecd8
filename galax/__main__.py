import sys

from galax.cli import main

sys.exit(main())
