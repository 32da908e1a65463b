import sys

from stream_worker.worker import main

sys.exit(main())
