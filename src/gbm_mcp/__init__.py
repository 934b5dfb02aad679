"""Branch intelligence for git repositories: listing, metadata, merge detection."""

__version__ = "0.1.0"
