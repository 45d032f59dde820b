import sys

from disk_search.main import main

sys.exit(main())
