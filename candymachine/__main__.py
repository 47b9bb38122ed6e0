import sys

from candymachine.cli import main

sys.exit(main())
