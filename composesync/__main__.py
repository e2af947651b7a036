"""
Main entry point for composesync when run as a module.
Allows execution via: python -m composesync
"""

from composesync.cli import main

if __name__ == '__main__':
    main()
