"""Pure domain values: clock, money helpers, request context and DTOs."""
