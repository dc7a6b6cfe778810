import sys

from ramp.cli.main import main

sys.exit(main())
