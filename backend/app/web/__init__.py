"""Server-rendered browser UI."""
