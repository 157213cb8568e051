import sys

from silc_benefits.pipeline import main

sys.exit(main())
