"""Main entry point for the circulation package."""

from circulation.cli import main

if __name__ == "__main__":
    main()
