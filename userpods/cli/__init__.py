"""userpods command-line interface."""
