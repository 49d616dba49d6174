"""Self-updater for the Xray proxy binary.

Checks GitHub for the latest Xray-core release, and when it differs from the
installed binary downloads the matching archive, swaps the binary in place
(keeping a single ``.bak`` generation) and restarts the service.
"""

__version__ = "0.1.0"
