"""HTTP surface: webhook receivers, operator routes, health checks."""
