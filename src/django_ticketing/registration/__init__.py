"""Orders, registrations, discount codes, and the payment lifecycle."""
