import sys

from permitflow.cli import main

sys.exit(main())
