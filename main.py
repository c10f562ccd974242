import sys

from walletlink.cli import main

if __name__ == "__main__":
    sys.exit(main())
