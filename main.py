"""Main entry point for prcomments."""

from prcomments.cli import app


def main() -> None:
    """Run the prcomments CLI (defaults to serving over stdio)."""
    app()


if __name__ == "__main__":
    main()
