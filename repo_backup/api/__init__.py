"""HTTP transport for the backup engine."""
