"""Public types: cluster specs, domain model and the backend interface."""
