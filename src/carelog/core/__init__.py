"""Clock sources, errors, ports and application state shared by every layer."""
