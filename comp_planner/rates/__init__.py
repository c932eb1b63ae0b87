"""Exchange-rate resolution: cache, shared snapshot, live source and static fallback."""
