"""Configuration for the federated search aggregator."""
