"""Background jobs: tick driver, candidate sweep, worker entrypoint."""
