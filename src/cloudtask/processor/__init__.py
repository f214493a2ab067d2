"""Results processor: persist status events to the job store."""
