"""notify/ -- Outbound email notifications (best effort, never fatal)."""
