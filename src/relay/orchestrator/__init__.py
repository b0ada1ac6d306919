"""Auto-reply orchestration: decide, generate, re-check, dispatch or escalate."""
