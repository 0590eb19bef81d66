"""Core building blocks shared by every service: errors, roles and the backend boundary."""
