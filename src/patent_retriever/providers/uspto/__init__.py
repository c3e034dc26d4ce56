"""USPTO Open Data Portal file wrapper repository."""
