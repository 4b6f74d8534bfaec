"""Assignment and status engine coordinating orders, partners and realtime events."""
