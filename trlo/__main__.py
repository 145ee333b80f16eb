"""Main entry point when executing trlo as a package.

This allows running the package using python -m trlo.
"""

from trlo.main import cli_entry_point

if __name__ == "__main__":
    cli_entry_point()
