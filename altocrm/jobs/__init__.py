"""Background job queue: a polled ``background_jobs`` table with typed handlers."""
