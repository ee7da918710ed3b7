"""
Main entry point for hostprobe, `python -m hostprobe -h <host>`.
"""
from hostprobe.app import run


def main_entry():
    """Runs the command-line diagnostics."""
    run()


if __name__ == "__main__":
    main_entry()
