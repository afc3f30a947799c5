"""Allows execution via: python -m tilepub"""

from tilepub.main import main

if __name__ == "__main__":
    main()
