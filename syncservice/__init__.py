"""HTTP sync service backing the remote habit store."""
