"""Error taxonomy, recovery probes, retry and rollback."""
