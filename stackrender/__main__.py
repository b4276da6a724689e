import sys

from stackrender.cli import main

sys.exit(main())
