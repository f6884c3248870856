"""Decision workflow: intake, research, recommendation and completion."""
