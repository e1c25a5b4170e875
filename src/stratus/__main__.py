"""Allow running the CLI with python -m stratus."""

from stratus.cli.main import main


if __name__ == "__main__":
    main()
