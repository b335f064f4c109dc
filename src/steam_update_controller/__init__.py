"""Steam Update Controller.

Keeps game-server workloads in a Kubernetes namespace in sync with the
latest published Steam build: polls SteamCMD for new build IDs, applies
and validates updates on the shared install volume, then restarts every
workload that mounts it.
"""

__version__ = "0.1.0"
