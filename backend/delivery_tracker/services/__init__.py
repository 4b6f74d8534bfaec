"""Domain services: order store, partner registry, assignment and payments."""
