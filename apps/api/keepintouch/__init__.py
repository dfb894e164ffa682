"""Keep-in-touch sequence engine."""
