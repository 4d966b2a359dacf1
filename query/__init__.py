"""HTTP and GraphQL adapters over the publication registry."""
