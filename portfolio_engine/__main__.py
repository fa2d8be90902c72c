import sys

from .trading_bot import main

sys.exit(main())
