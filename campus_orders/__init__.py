"""Order lifecycle service for the campus services app."""
