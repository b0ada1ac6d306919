"""Per-agent daily performance tracking and range reports."""
