"""ngup command line."""
