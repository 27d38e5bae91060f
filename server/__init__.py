"""HTTP surface of the affiliate ledger: config, logging, API, scheduler."""
