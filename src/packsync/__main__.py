"""Allow ``python -m packsync`` (used by the update helper)."""

from .cli import main

if __name__ == "__main__":
    main()
