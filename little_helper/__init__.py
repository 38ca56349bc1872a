"""Little Helper: local assistant service with provider routing and guarded command execution."""
