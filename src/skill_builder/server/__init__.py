"""REST server for the skill builder workflow."""
