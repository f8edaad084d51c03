import sys

from crossrun.cli import main


sys.exit(main())
