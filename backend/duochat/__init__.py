"""duochat: 1:1 real-time messaging backend."""
