"""Module entry point for `python -m dockwright`."""

from dockwright.cli.main import main

if __name__ == "__main__":
    main()
