import sys

from schedbench.cli import main

sys.exit(main())
