import sys

from serverkit.cli import main

sys.exit(main())
