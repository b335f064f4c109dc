"""Entry point for ``python -m steam_update_controller``."""

from steam_update_controller.main import run

if __name__ == "__main__":
    run()
