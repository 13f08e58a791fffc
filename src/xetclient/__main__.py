"""
xetclient CLI entry point.

Usage:
    python -m xetclient resolve owner/name path/to/file
    python -m xetclient download owner/name path/to/file --dest ./out
"""

from xetclient.cli import main

if __name__ == "__main__":
    main()
