"""Run the BAR CLI with ``python -m bar``."""

from .cli import main

if __name__ == "__main__":  # pragma: no cover
    main()
