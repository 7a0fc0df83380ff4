import sys

from whirl.main import main

sys.exit(main())
