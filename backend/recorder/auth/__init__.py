"""Identity and anti-forgery helpers for the recorder endpoints."""
