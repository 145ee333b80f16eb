"""Domain Layer: models, ports, events and errors of the batch engine."""
