"""Leave ledger: per-user annual leave grants, reservations and FIFO usage."""
