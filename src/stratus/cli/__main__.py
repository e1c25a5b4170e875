"""Allow running the CLI with python -m stratus.cli."""

from stratus.cli.main import main


if __name__ == "__main__":
    main()
