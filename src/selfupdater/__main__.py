"""Entry point for ``python -m selfupdater``."""

from selfupdater.cli import app


def main() -> None:
    """Run the selfupdater command line."""
    app()


if __name__ == "__main__":
    main()
