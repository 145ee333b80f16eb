"""trlo: Trello command-line tool with dependency-aware batch operations."""

__version__ = "0.4.0"
