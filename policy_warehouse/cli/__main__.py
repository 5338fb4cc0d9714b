import sys

from .pipeline_cli import main

sys.exit(main())
