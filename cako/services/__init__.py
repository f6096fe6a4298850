"""Services Layer — registries and the lifecycle pipeline (imperative shell around core/)."""
