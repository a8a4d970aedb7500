"""HTTP surface of the gateway adapter."""
