"""On-disk records: error log, session ledger."""
