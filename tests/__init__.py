"""ROE test-suite."""
