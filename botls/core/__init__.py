"""Certificate lifecycle core: scheduling, orders and ACME collaborators."""
