"""Data models shared across userpods components."""
