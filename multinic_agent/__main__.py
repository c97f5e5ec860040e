import sys

from multinic_agent.main import main

sys.exit(main())
