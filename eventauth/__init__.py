"""Cookie-based JWT authentication core for the event planner."""
