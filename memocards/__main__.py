"""Allow ``python -m memocards``."""

from .cli import main

if __name__ == "__main__":
    main()
