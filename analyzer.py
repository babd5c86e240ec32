"""Launcher wrapper to keep top-level script while code lives in package.
"""

import sys

from dotenv import load_dotenv

# Load .env before any mobile_crash_analyzer imports (so MOBILE_CRASH_* are set)
load_dotenv()


def main():
    from mobile_crash_cli import main as _cli_main
    sys.exit(_cli_main())


if __name__ == "__main__":
    main()
