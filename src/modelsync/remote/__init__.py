"""HTTP clients for an inference server: blobs, show, create, version."""

from modelsync.remote.blob_client import BlobDownload, RemoteBlobClient
from modelsync.remote.create import CreateRequest, ModelCreateStreamer
from modelsync.remote.server import ServerHandle

__all__ = [
    "BlobDownload",
    "CreateRequest",
    "ModelCreateStreamer",
    "RemoteBlobClient",
    "ServerHandle",
]
