import sys

from stratum.cli import main

if __name__ == "__main__":
    sys.exit(main())
