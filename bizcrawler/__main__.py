import sys

from bizcrawler.main import main

sys.exit(main())
