"""Read-only selectors for jobs, stage history, and inventory."""
