"""Run with ``python -m abstract_operator``."""

from abstract_operator.main import run

if __name__ == "__main__":
    run()
