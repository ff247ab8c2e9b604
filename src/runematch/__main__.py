import sys

from runematch.cli import main

sys.exit(main())
