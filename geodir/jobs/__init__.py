"""Durable notification dispatch: queue, worker pool and process entrypoint."""
