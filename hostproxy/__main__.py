import sys

from hostproxy.main import main

sys.exit(main())
