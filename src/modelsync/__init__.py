"""modelsync: blob transfer engine for local inference server model stores.

Moves content-addressed model blobs between a local store and remote servers
(local->remote, remote->local, remote->remote), then registers the model on the
destination through its create endpoint.
"""

__version__ = "0.3.0"
