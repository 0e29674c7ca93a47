import sys

from teamwire.cli import main

sys.exit(main())
