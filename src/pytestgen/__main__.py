import sys

from pytestgen.cli import main

sys.exit(main())
