"""Order lifecycle: enums, transition rules, storage and the order store."""
