"""Main entry point for the Duet CLI.

Usage:
    python -m duet.main --help
    duet --help  # If installed via pip/uv
"""

from duet.cli import main

if __name__ == "__main__":
    main()
