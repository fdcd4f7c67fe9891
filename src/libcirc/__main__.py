"""Main entry point for the libcirc package."""

from libcirc.tracker.cli import main


if __name__ == "__main__":
    main()
