"""Allow running the CLI with ``python -m circulation``."""

from .cli import main

if __name__ == "__main__":
    main()
