"""Legacy records, destination documents and per-record migration state."""
