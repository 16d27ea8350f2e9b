"""Module entry point: ``python -m gitfleet`` behaves like the ``gitfleet`` script."""

from gitfleet.run import main

if __name__ == "__main__":
    main()
