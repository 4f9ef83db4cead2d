import sys

from zeroscaler.cli import main

sys.exit(main())
