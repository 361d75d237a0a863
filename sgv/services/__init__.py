"""Service layer: release pipeline and versioning process."""
