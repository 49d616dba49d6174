"""Entry point for ``python -m xray_updater``."""

from xray_updater.main import run

if __name__ == "__main__":
    run()
