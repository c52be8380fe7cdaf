"""IdP attribute resolution engine with pairwise identifier connectors."""
