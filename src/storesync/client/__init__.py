"""Client module - Gateway, local store, sessions and the sync engine."""
