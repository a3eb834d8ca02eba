"""Leave module — grants, reservations, FIFO usage and their HTTP surface."""
