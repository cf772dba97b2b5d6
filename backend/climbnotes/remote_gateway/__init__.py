"""HTTP gateway to the remote sync store."""

from climbnotes.remote_gateway.client import PullPayload, PushPayload, RemoteSyncClient, RemoteSyncError

__all__ = ["PullPayload", "PushPayload", "RemoteSyncClient", "RemoteSyncError"]
