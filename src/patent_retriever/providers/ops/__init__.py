"""EPO Open Patent Services repository."""
