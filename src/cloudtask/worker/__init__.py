"""Job worker: dispatch by type, execute, report lifecycle transitions."""
