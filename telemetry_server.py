# telemetry_server.py
import sys
from telemetry_mock.server import main
if __name__ == "__main__":
    sys.exit(main())
